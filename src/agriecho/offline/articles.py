"""
Saved knowledge-base articles for offline reading.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from agriecho.offline.notifier import INFO, SUCCESS, Notifier
from agriecho.offline.storage import KeyValueStore


logger = logging.getLogger(__name__)


ARTICLES_KEY = 'cached-articles'


class OfflineArticleStore:
    """Upsert-by-id list of articles kept in the local store."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], float],
        notifier: Optional[Notifier] = None,
    ):
        self._store = store
        self._clock = clock
        self._notifier = notifier

    def get_articles(self, category: Optional[str] = None) -> List[Dict[str, Any]]:
        articles = self._store.get(ARTICLES_KEY, [])
        if category is not None:
            articles = [a for a in articles if a.get('category') == category]
        return articles

    def get_article(self, article_id: Any) -> Optional[Dict[str, Any]]:
        for article in self.get_articles():
            if article.get('id') == article_id:
                return article
        return None

    def is_saved(self, article_id: Any) -> bool:
        return self.get_article(article_id) is not None

    def save(self, article: Dict[str, Any]) -> bool:
        """Save or replace an article, stamping saved_at."""
        record = dict(article, saved_at=self._clock())

        def upsert(articles):
            for index, existing in enumerate(articles):
                if existing.get('id') == record.get('id'):
                    articles[index] = record
                    return articles
            articles.append(record)
            return articles

        self._store.update(ARTICLES_KEY, upsert, default=[])
        self._notify('Article saved for offline reading!', SUCCESS)
        return True

    def remove(self, article_id: Any) -> bool:
        self._store.update(
            ARTICLES_KEY,
            lambda articles: [a for a in articles if a.get('id') != article_id],
            default=[],
        )
        self._notify('Article removed from offline storage', INFO)
        return True

    def storage_size(self) -> Dict[str, int]:
        """Count and serialized size of the saved articles."""
        articles = self.get_articles()
        size_in_bytes = len(json.dumps(articles).encode('utf-8'))
        return {
            'articles': len(articles),
            'size_in_bytes': size_in_bytes,
            'size_in_kb': round(size_in_bytes / 1024),
            'size_in_mb': round(size_in_bytes / (1024 * 1024)),
        }

    def clear_all(self) -> None:
        self._store.delete(ARTICLES_KEY)
        self._notify('All offline articles cleared', INFO)

    def _notify(self, message: str, level: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(message, level)
