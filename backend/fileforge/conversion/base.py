"""Common converter interface.

Every converter takes a :class:`SourceFile` and returns the output bytes, or a
list of byte strings when one input yields several files (one per PDF page).
The dispatcher decides whether the source also gets a filesystem path;
converters never create input files themselves.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from fileforge.conversion.models import AdvancedOptions, Category

Output = Union[bytes, list[bytes]]


@dataclass
class SourceFile:
    data: bytes
    extension: str = ""
    # Set by the dispatcher only for converters with requires_path.
    path: Optional[Path] = None


class Converter:
    category: Category
    # Needs source.path (codec reads from disk).
    requires_path = False
    # Spawns an external process; bounded by the subprocess semaphore.
    subprocess_backed = False
    # Takes several sources in one call (convert_many).
    combines_sources = False

    def convert(self, source: SourceFile, options: AdvancedOptions) -> Output:
        raise NotImplementedError

    def convert_many(self, sources: list[SourceFile], options: AdvancedOptions) -> Output:
        if len(sources) != 1:
            raise NotImplementedError(f"{type(self).__name__} takes a single source")
        return self.convert(sources[0], options)


class FunctionConverter(Converter):
    """Adapts a plain ``func(data, options) -> bytes`` to the Converter interface."""

    def __init__(self, category: Category, func: Callable[[bytes, AdvancedOptions], Output]):
        self.category = category
        self.func = func

    def convert(self, source: SourceFile, options: AdvancedOptions) -> Output:
        return self.func(source.data, options)

    def __repr__(self) -> str:
        return f"FunctionConverter({self.func.__name__})"


class CombiningConverter(FunctionConverter):
    """Adapts ``func(sources, options) -> bytes`` where one output is built from many inputs."""

    combines_sources = True

    def __init__(self, category: Category, func: Callable[[list[SourceFile], AdvancedOptions], Output]):
        super().__init__(category, func)

    def convert(self, source: SourceFile, options: AdvancedOptions) -> Output:
        return self.func([source], options)

    def convert_many(self, sources: list[SourceFile], options: AdvancedOptions) -> Output:
        return self.func(sources, options)

    def __repr__(self) -> str:
        return f"CombiningConverter({self.func.__name__})"
