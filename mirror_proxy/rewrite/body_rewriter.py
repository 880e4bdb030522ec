"""
Rewrite HTML served through the mirror.

Two steps are applied to every page:

- literal domain substitution driven by an ordered ``RewriteRuleset``
- injection of a small script that adds hover styling to every link

Patterns are plain substrings, never regular expressions.
"""

from dataclasses import dataclass
from typing import Iterator, Tuple

BODY_CLOSE_TAG = "</body>"

HOVER_SCRIPT = """<script>
document.addEventListener('DOMContentLoaded', function () {
  // link effect
  const links = document.querySelectorAll('a');
  links.forEach((link) => {
    link.style.transition = 'all 0.3s ease';
    link.addEventListener('mouseenter', () => {
      link.style.backgroundColor = '#ffeb3b';
      link.style.textDecoration = 'none';
      link.style.borderRadius = '3px';
      link.style.border = '1px solid orange';
      link.style.padding = '0 4px';
    });
    link.addEventListener('mouseleave', () => {
      link.style.backgroundColor = 'transparent';
      link.style.padding = '0';
      link.style.border = '';
    });
  });
});
</script>
"""


@dataclass(frozen=True)
class RewriteRuleset:
    """Ordered (pattern, replacement) pairs, most specific first."""

    rules: Tuple[Tuple[str, str], ...]

    @classmethod
    def for_domains(cls, source_domain: str, mirror_domain: str) -> "RewriteRuleset":
        """
        Build the ruleset mapping ``source_domain`` onto ``mirror_domain``.

        Matching is anchored on the character in front of the domain: ``//``
        covers scheme-qualified and protocol-relative URLs, ``.`` covers
        subdomains. A bare ``wikipedia.org`` inside ``m-wikipedia.org`` is
        therefore never matched again.
        """
        return cls(
            rules=(
                (f"//{source_domain}", f"//{mirror_domain}"),
                (f".{source_domain}", f".{mirror_domain}"),
            )
        )

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self.rules)

    def validate(self) -> None:
        """
        Reject rulesets whose replacements would be matched again on a second pass.
        """
        for pattern, _ in self.rules:
            if not pattern:
                raise ValueError("Rewrite patterns must not be empty")
            for _, replacement in self.rules:
                if pattern in replacement:
                    raise ValueError(
                        f"Replacement '{replacement}' contains pattern '{pattern}'; "
                        "rewriting would not be idempotent"
                    )

    def apply(self, text: str) -> str:
        for pattern, replacement in self.rules:
            text = text.replace(pattern, replacement)
        return text


DEFAULT_RULESET = RewriteRuleset.for_domains("wikipedia.org", "m-wikipedia.org")


def inject_before_body_close(html: str, snippet: str) -> str:
    """Insert ``snippet`` right before the first ``</body>``, if there is one."""
    index = html.find(BODY_CLOSE_TAG)
    if index == -1:
        return html
    return html[:index] + snippet + html[index:]


def rewrite_html(
    html: str,
    ruleset: RewriteRuleset = DEFAULT_RULESET,
    snippet: str = HOVER_SCRIPT,
) -> str:
    if not html:
        return html
    rewritten = ruleset.apply(html)
    # The snippet is only inserted once
    if snippet in rewritten:
        return rewritten
    return inject_before_body_close(rewritten, snippet)


class BodyRewriter:
    """Binds a ruleset and snippet so the transform can call ``rewrite(html)``."""

    def __init__(
        self,
        ruleset: RewriteRuleset = DEFAULT_RULESET,
        snippet: str = HOVER_SCRIPT,
    ):
        self.ruleset = ruleset
        self.snippet = snippet

    def rewrite(self, html: str) -> str:
        return rewrite_html(html, self.ruleset, self.snippet)
