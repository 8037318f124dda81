"""Commit sonrası yan etkiler için hata sınırlı kanca listesi."""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class HookResult:
    name: str
    ok: bool
    error: Optional[str] = None


class PostCommitHooks:
    """İşlem commit edildikten sonra çalıştırılacak yan etkileri toplar.

    Her kanca kendi try/except sınırında çalışır; bir kancanın hatası
    günlüğe yazılır ve ``HookResult`` içinde raporlanır, ancak sonraki kancaları
    durdurmaz ve çağırana yükseltilmez.
    """

    def __init__(self) -> None:
        self._hooks: List[Tuple[str, Callable[[], object]]] = []

    def add(self, name: str, func: Callable[[], object]) -> None:
        self._hooks.append((name, func))

    def run(self) -> List[HookResult]:
        results = []
        for name, func in self._hooks:
            try:
                func()
                results.append(HookResult(name=name, ok=True))
            except Exception as e:
                logger.exception(f"Commit sonrası '{name}' başarısız oldu: {e}")
                results.append(HookResult(name=name, ok=False, error=str(e)))
        return results
