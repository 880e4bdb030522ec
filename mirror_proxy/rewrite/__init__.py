from .body_rewriter import (
    BodyRewriter,
    RewriteRuleset,
    DEFAULT_RULESET,
    HOVER_SCRIPT,
    rewrite_html,
)

__all__ = [
    "BodyRewriter",
    "RewriteRuleset",
    "DEFAULT_RULESET",
    "HOVER_SCRIPT",
    "rewrite_html",
]
