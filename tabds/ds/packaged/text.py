"""Plain text builder: one ``{"text": ...}`` example per line, paragraph or file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator

from tabds.ds.builder import BuilderConfig
from tabds.ds.features import Features, Value
from tabds.ds.info import DatasetInfo
from tabds.ds.packaged.base import PackagedBuilder

SAMPLE_BY = ("line", "paragraph", "document")


@dataclass
class TextConfig(BuilderConfig):
    encoding: str = "utf-8"
    keep_linebreaks: bool = False
    sample_by: str = "line"

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.sample_by not in SAMPLE_BY:
            raise ValueError(f"sample_by must be one of {SAMPLE_BY}, got {self.sample_by!r}")


class Text(PackagedBuilder):
    BUILDER_CONFIG_CLASS = TextConfig

    def _info(self) -> DatasetInfo:
        return DatasetInfo(features=Features({"text": Value("string")}))

    def _iter_file(self, path: str) -> Iterator[dict[str, Any]]:
        with open(path, encoding=self.config.encoding, newline=None) as f:
            if self.config.sample_by == "line":
                for line in f:
                    yield {"text": line if self.config.keep_linebreaks else line.rstrip("\n")}
            elif self.config.sample_by == "paragraph":
                paragraphs = [p for p in f.read().split("\n\n") if p.strip()]
                for i, paragraph in enumerate(paragraphs):
                    if not self.config.keep_linebreaks:
                        yield {"text": paragraph.strip("\n")}
                    elif i < len(paragraphs) - 1:
                        yield {"text": paragraph + "\n\n"}
                    else:
                        yield {"text": paragraph}
            else:
                yield {"text": f.read()}
