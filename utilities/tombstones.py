"""
閉じたセッションIDの記録（件数上限つき）
"""
from collections import OrderedDict
from typing import Iterable


class ClosedIds:
    """
    最近閉じたセッションIDを新しい順に最大 maxlen 件だけ覚えておく

    close を2回呼んでも NotFound にしないために使う。
    上限を超えた古いIDは忘れるので、その後の close は未知のIDとして扱われる。
    """

    def __init__(self, maxlen: int):
        self.maxlen = maxlen
        self._ids: "OrderedDict[str, None]" = OrderedDict()

    def add(self, session_id: str):
        self._ids[session_id] = None
        self._ids.move_to_end(session_id)
        while len(self._ids) > self.maxlen:
            self._ids.popitem(last=False)

    def update(self, session_ids: Iterable[str]):
        for session_id in session_ids:
            self.add(session_id)

    def discard(self, session_id: str):
        self._ids.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)
