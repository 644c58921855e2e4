from __future__ import annotations

from lodestone.normalizer import extract_title, normalize

PAGE = """
<html>
  <head><title>Refunds | Acme</title><script>var tracking = 1;</script></head>
  <body>
    <nav><a href="/">Home</a> <a href="/pricing">Pricing</a></nav>
    <main>
      <h1>Refund policy</h1>
      <p>Refunds are <strong>always</strong> issued to the <em>original</em> card.</p>
      <ul>
        <li>Annual plans</li>
        <li>Monthly plans
          <ul><li>Prorated by day</li></ul>
        </li>
      </ul>
      <ol><li>Open a ticket</li><li>Wait for approval</li></ol>
      <table>
        <tr><th>Plan</th><th>Days</th></tr>
        <tr><td>Annual</td><td>30</td></tr>
      </table>
      <pre>curl -X POST /refunds</pre>
    </main>
    <footer>Copyright Acme</footer>
  </body>
</html>
"""


def test_normalize_renders_markdown_like_structure() -> None:
    text = normalize(PAGE)

    assert text.startswith("# Refund policy")
    assert "Refunds are **always** issued to the *original* card." in text
    assert "- Annual plans\n- Monthly plans\n  - Prorated by day" in text
    assert "1. Open a ticket\n2. Wait for approval" in text
    assert "| Plan | Days |\n| --- | --- |\n| Annual | 30 |" in text
    assert "```\ncurl -X POST /refunds\n```" in text


def test_normalize_drops_navigation_scripts_and_footer() -> None:
    text = normalize(PAGE)

    assert "Home" not in text
    assert "tracking" not in text
    assert "Copyright" not in text


def test_normalize_falls_back_to_body_without_boilerplate() -> None:
    html = """
    <body>
      <div class="sidebar">Sponsored links</div>
      <div id="cookie-banner">We use cookies</div>
      <div><h2>Shipping</h2><p>Orders ship within two days.</p></div>
    </body>
    """

    text = normalize(html)

    assert text == "## Shipping\n\nOrders ship within two days."


def test_normalize_keeps_content_inside_sidebar_layout_classes() -> None:
    themed_body = """
    <html><body class="page right-sidebar">
      <main><p>Our refund policy covers annual plans.</p></main>
      <div class="widget-sidebar">Recent posts</div>
    </body></html>
    """
    wrapped_main = """
    <div class="content-sidebar-wrap">
      <main class="content"><p>Our refund policy covers annual plans.</p></main>
      <aside>Recent posts</aside>
    </div>
    """
    wrapped_body = """
    <body>
      <div class="site-cookie-consent-wrap">
        <h2>Refund policy</h2>
        <p>Refunds are issued to the original card within five days.</p>
        <div class="cookie-notice">We use cookies</div>
      </div>
    </body>
    """

    assert normalize(themed_body) == "Our refund policy covers annual plans."
    assert normalize(wrapped_main) == "Our refund policy covers annual plans."
    assert normalize(wrapped_body) == (
        "## Refund policy\n\nRefunds are issued to the original card within five days."
    )


def test_normalize_collapses_blank_lines() -> None:
    text = normalize("<body><p>One</p><p></p><p></p><p>Two</p></body>")

    assert text == "One\n\nTwo"


def test_extract_title_prefers_title_then_heading() -> None:
    assert extract_title(PAGE) == "Refunds | Acme"
    assert extract_title("<body><h1>Warranty terms</h1></body>") == "Warranty terms"
    assert extract_title("<body><p>No title here</p></body>") is None
