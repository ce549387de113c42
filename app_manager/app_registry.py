import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from app_manager.app_repository import AppRepository
from app_manager.models import AppDescriptor

ALL_TOKENS = {"0", "all"}
_RANGE = re.compile(r"^(\d+)\s*-\s*(\d+)$")


def normalize(apps: Iterable[AppDescriptor]) -> List[AppDescriptor]:
    """Keep supported apps, dedup by case-insensitive name (first wins), keep order."""
    seen = set()
    out: List[AppDescriptor] = []
    for a in apps:
        if not a.is_supported:
            continue
        if a.key in seen:
            continue
        seen.add(a.key)
        out.append(a)
    return out


@dataclass
class Selection:
    apps: List[AppDescriptor] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)


class AppRegistry:
    def __init__(self, repo: AppRepository):
        self.repo = repo
        self.apps: List[AppDescriptor] = []
        self.reload()

    def reload(self) -> List[AppDescriptor]:
        self.apps = normalize(self.repo.list())
        return self.apps

    def __len__(self) -> int:
        return len(self.apps)

    def __iter__(self):
        return iter(self.apps)

    def get(self, name: str) -> Optional[AppDescriptor]:
        key = name.casefold()
        for a in self.apps:
            if a.key == key:
                return a
        return None

    def by_index(self, index: int) -> Optional[AppDescriptor]:
        """1-based."""
        if 1 <= index <= len(self.apps):
            return self.apps[index - 1]
        return None

    def resolve_token(self, token: str) -> List[AppDescriptor]:
        token = token.strip()
        if not token:
            return []
        if token.lower() in ALL_TOKENS:
            return list(self.apps)
        if token.isdigit():
            a = self.by_index(int(token))
            return [a] if a else []
        a = self.get(token)
        return [a] if a else []

    def select(self, selection: str) -> Selection:
        """
        Resolve a user selection such as "1,3", "2-4", "My App" or "all".
        Never raises; unknown tokens end up in `unmatched`.
        """
        result = Selection()
        seen = set()

        def _add(found: List[AppDescriptor]) -> None:
            for a in found:
                if a.key not in seen:
                    seen.add(a.key)
                    result.apps.append(a)

        for item in selection.split(","):
            item = item.strip()
            if not item:
                continue
            m = _RANGE.match(item)
            if m:
                lo, hi = int(m.group(1)), int(m.group(2))
                picked = [self.by_index(i) for i in range(min(lo, hi), max(lo, hi) + 1)]
                picked = [a for a in picked if a]
                if picked:
                    _add(picked)
                else:
                    result.unmatched.append(item)
                continue
            found = self.resolve_token(item)
            if found:
                _add(found)
            else:
                result.unmatched.append(item)
        return result
