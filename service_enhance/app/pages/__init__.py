from .verify import render_verify_embed_page, render_verify_page

__all__ = ["render_verify_embed_page", "render_verify_page"]
