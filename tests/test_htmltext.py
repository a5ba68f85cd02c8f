"""
Tests de l'extraction des blocs de texte HTML.
"""

from doc_translator.htmltext import html_to_blocks, html_to_text

PAGE = """
<html>
  <head><title>Titre</title><style>p { color: red; }</style></head>
  <body>
    <h1>Chapitre 1</h1>
    <div><p>Premier <b>paragraphe</b>.</p></div>
    <ul><li>Item <p>imbriqué</p></li></ul>
    <p>   </p>
    <script>var x = 1;</script>
  </body>
</html>
"""


class TestHtmlToBlocks:
    def test_root_blocks_only(self):
        blocks = html_to_blocks(PAGE)

        assert blocks == [
            "<h1>Chapitre 1</h1>",
            "<p>Premier <b>paragraphe</b>.</p>",
            "<li>Item <p>imbriqué</p></li>",
        ]

    def test_document_without_blocks(self):
        assert html_to_blocks("<span>seul</span>") == ["<span>seul</span>"]

    def test_empty_document(self):
        assert html_to_blocks("<div>  </div>") == []


def test_html_to_text():
    assert html_to_text(PAGE) == "Chapitre 1\n\nPremier paragraphe .\n\nItem imbriqué"
