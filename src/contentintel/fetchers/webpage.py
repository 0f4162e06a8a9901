"""Generic web page fetcher."""

from __future__ import annotations

from bs4 import BeautifulSoup

from contentintel.fetchers.base import FetchedArticle, Fetcher, SourceLike

MAX_PAGE_CHARS = 20_000


class WebPageFetcher(Fetcher):
    """Extract the main text of a single page."""

    method = "webpage"

    def _fetch(self, source: SourceLike) -> list[FetchedArticle]:
        resp = self._client.get(source.url)
        resp.raise_for_status()
        soup = BeautifulSoup(resp.text, "html.parser")

        # Remove non-content elements
        for tag in soup(["script", "style", "nav", "header", "footer", "aside", "form"]):
            tag.decompose()

        title = soup.title.get_text(strip=True) if soup.title else ""

        # Try common article selectors
        content = (
            soup.find("article")
            or soup.find("main")
            or soup.find(class_="post-content")
            or soup.find(class_="entry-content")
            or soup.find(class_="article-body")
            or soup.body
        )
        if content is None:
            return []
        text = content.get_text(separator="\n", strip=True)[:MAX_PAGE_CHARS]
        if not text:
            return []

        return [FetchedArticle(url=source.url, title=title or source.name, content=text)]
