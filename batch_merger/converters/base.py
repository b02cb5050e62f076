"""
Strategy chains shared by every format converter.

A converter is an ordered list of strategies, highest fidelity first. The
chain runner tries each one in turn, treats an exception or a missing/empty
output as a failure of that strategy only, and raises ConversionError once
every strategy has been exhausted.
"""

import asyncio
import inspect
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from ..exceptions import ConversionError
from ..models import ConversionResult, FileKind
from ..office_engine import OfficeEngine
from ..run_log import RunLogger


@dataclass
class ConversionContext:
    input_path: str
    output_path: str
    original_name: str
    mime_type: Optional[str] = None
    attempts: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.original_name)[1].lower()

    @property
    def is_csv(self) -> bool:
        mime_type = (self.mime_type or "").split(";")[0].strip().lower()
        return self.extension == ".csv" or mime_type == "text/csv"


@dataclass
class ConversionStrategy:
    name: str
    tier: int
    func: Callable[[ConversionContext], Any]


def _remove_quietly(path: str) -> None:
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            pass


class StrategyChain:
    """Runs strategies in tier order and returns the first success."""

    def __init__(self, strategies: List[ConversionStrategy], run_logger: Optional[RunLogger] = None):
        self.strategies = sorted(strategies, key=lambda strategy: strategy.tier)
        self.run_logger = run_logger or RunLogger.disabled()

    @property
    def names(self) -> List[str]:
        return [strategy.name for strategy in self.strategies]

    async def _invoke(self, strategy: ConversionStrategy, context: ConversionContext) -> Any:
        if inspect.iscoroutinefunction(strategy.func):
            return await strategy.func(context)
        return await asyncio.to_thread(strategy.func, context)

    async def run(self, context: ConversionContext) -> ConversionResult:
        started = time.perf_counter()
        for strategy in self.strategies:
            _remove_quietly(context.output_path)
            try:
                await self._invoke(strategy, context)
                if not os.path.exists(context.output_path):
                    raise ConversionError(f"{strategy.name} produced no output")
                if os.path.getsize(context.output_path) == 0:
                    raise ConversionError(f"{strategy.name} produced an empty file")
            except Exception as exc:
                _remove_quietly(context.output_path)
                context.attempts.append((strategy.name, str(exc) or type(exc).__name__))
                self.run_logger.warning(
                    "conversion_strategy_failed",
                    f"Strategy {strategy.name} failed; trying next",
                    file=context.original_name,
                    strategy=strategy.name,
                    error=str(exc),
                )
                continue

            elapsed = time.perf_counter() - started
            self.run_logger.info(
                "conversion_succeeded",
                f"Converted with {strategy.name}",
                file=context.original_name,
                strategy=strategy.name,
                tier=strategy.tier,
                elapsed=round(elapsed, 3),
            )
            return ConversionResult(
                source=context.input_path,
                fragment_path=context.output_path,
                strategy=strategy.name,
                tier=strategy.tier,
                elapsed=elapsed,
                success=True,
                attempts=list(context.attempts),
            )

        raise ConversionError(
            f"All conversion strategies failed for {context.original_name}",
            source=context.input_path,
            attempts=context.attempts,
        )


class BaseConverter:
    """Produces a PDF representation of one input kind."""

    kind: FileKind = None
    supported_extensions: Tuple[str, ...] = ()

    def __init__(
        self,
        engine: Optional[OfficeEngine] = None,
        fragment_dir: Optional[str] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        self.engine = engine or OfficeEngine.disabled()
        self.fragment_dir = fragment_dir or os.environ.get("TEMP_DIR", "./temp")
        self.run_logger = run_logger or RunLogger.disabled()

    def strategies(self) -> List[ConversionStrategy]:
        raise NotImplementedError

    def engine_strategy(self, tier: int = 0) -> ConversionStrategy:
        async def _convert(context: ConversionContext) -> str:
            return await self.engine.convert(context.input_path, context.output_path)

        return ConversionStrategy("office-engine", tier, _convert)

    def strategies_for(self, context: ConversionContext) -> List[ConversionStrategy]:
        return self.strategies()

    def chain(self, context: ConversionContext, run_logger: Optional[RunLogger] = None) -> StrategyChain:
        return StrategyChain(self.strategies_for(context), run_logger=run_logger or self.run_logger)

    async def convert_to_pdf(
        self,
        path: str,
        original_name: Optional[str] = None,
        output_dir: Optional[str] = None,
        run_logger: Optional[RunLogger] = None,
        mime_type: Optional[str] = None,
    ) -> ConversionResult:
        output_dir = output_dir or self.fragment_dir
        os.makedirs(output_dir, exist_ok=True)
        original_name = original_name or os.path.basename(path)
        output_path = os.path.join(output_dir, f"{uuid.uuid4().hex}.pdf")
        context = ConversionContext(
            input_path=path, output_path=output_path, original_name=original_name, mime_type=mime_type
        )
        result = await self.chain(context, run_logger).run(context)
        print(f"    Converted ({result.strategy}): {original_name}")
        return result
