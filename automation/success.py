"""Post-run success predicate evaluation."""

from __future__ import annotations

import logging
from typing import Optional

from automation.dsl.schema import SuccessCondition
from automation.session import Session

log = logging.getLogger(__name__)


class _Snapshot:
    """Lazily reads URL and visible text, at most once each."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._url: Optional[str] = None
        self._text: Optional[str] = None

    async def url(self) -> str:
        if self._url is None:
            self._url = await self._session.current_url()
        return self._url

    async def text(self) -> str:
        if self._text is None:
            self._text = await self._session.visible_text()
        return self._text


async def evaluate_success(condition: Optional[SuccessCondition], session: Session) -> bool:
    """Evaluate a predicate tree against the current session state.

    An absent tree is true.  ``any`` over no predicates is false and ``all``
    over no predicates is true.
    """

    if condition is None:
        return True
    result = await _evaluate(condition, _Snapshot(session))
    log.debug("Success check: %s", result)
    return result


async def _evaluate(node: SuccessCondition, snapshot: _Snapshot) -> bool:
    if node.url_contains is not None:
        return node.url_contains in await snapshot.url()
    if node.text_contains is not None:
        return node.text_contains in await snapshot.text()
    if node.any is not None:
        for child in node.any:
            if await _evaluate(child, snapshot):
                return True
        return False
    if node.all is not None:
        for child in node.all:
            if not await _evaluate(child, snapshot):
                return False
        return True
    return True
