"""
Préparation des documents HTML pour le découpage en mode HTML.

Le HTML est réduit à ses blocs de texte (paragraphes, titres, items de
liste...) que Chunker.split_blocks regroupe sans jamais les couper : chaque
chunk garde un HTML valide à traduire avec tag_handling=html. Le texte brut
de chaque chunk est extrait du HTML pour la validation et l'affichage.
"""

from bs4 import BeautifulSoup
from bs4.element import Tag

# Balises considérées comme blocs de texte autonomes
BLOCK_TAGS = {"p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote", "pre", "td", "th"}

# Balises ignorées lors de l'extraction
IGNORED_TAGS = {"script", "style", "head", "title"}


def _is_root_block(tag: Tag) -> bool:
    """Un bloc imbriqué dans un autre bloc appartient à son parent."""
    return not any(parent.name in BLOCK_TAGS for parent in tag.parents)


def html_to_blocks(html: str) -> list[str]:
    """
    Extrait les blocs de texte d'un document HTML (HTML externe de chaque bloc).

    Example:
        >>> html_to_blocks("<body><p>Un</p><div><h2>Deux</h2></div></body>")
        ['<p>Un</p>', '<h2>Deux</h2>']
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(IGNORED_TAGS):
        tag.decompose()

    blocks = [
        str(tag).strip()
        for tag in soup.find_all(BLOCK_TAGS)
        if _is_root_block(tag) and tag.get_text(strip=True)
    ]
    if not blocks and soup.get_text(strip=True):
        # Pas de balise de bloc : le document entier forme un bloc
        blocks = [str(soup).strip()]
    return blocks


def html_to_text(html: str) -> str:
    """Texte brut d'un fragment HTML, un bloc par paragraphe."""
    blocks = html_to_blocks(html)
    texts = [BeautifulSoup(block, "html.parser").get_text(" ", strip=True) for block in blocks]
    return "\n\n".join(text for text in texts if text)
