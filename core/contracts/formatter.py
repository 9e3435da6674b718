from typing import Protocol
from .models import ReportContext

class Formatter(Protocol):
    def format(self, ctx: ReportContext) -> str:
        ...
