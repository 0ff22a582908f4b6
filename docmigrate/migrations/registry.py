"""
Step Registry
Ordered, static registry of migration steps indexed by name
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..core.exceptions import StepDefinitionError

logger = logging.getLogger(__name__)

Transform = Callable[..., Optional[Dict[str, Any]]]
NaturalKey = Callable[[Dict[str, Any]], str]
ContextLoader = Callable[[Any, List[Dict[str, Any]]], Awaitable[Any]]


def source_key(collection: str) -> NaturalKey:
    """Natural key '<collection>:<_id>' for documents of a legacy collection"""
    def natural_key(doc: Dict[str, Any]) -> str:
        if doc.get("_id") is None:
            raise ValueError(f"{collection} document has no _id")
        return f"{collection}:{doc['_id']}"
    natural_key.__name__ = f"{collection}_key"
    return natural_key


@dataclass(frozen=True)
class SourceSpec:
    """
    One legacy collection read by a step.

    transform(doc) returns the target record, or None to skip the document.
    When context_loader is set it is awaited once per batch with
    (database, batch) and its result is passed as transform(doc, context).
    """
    collection: str
    transform: Transform
    natural_key: NaturalKey
    context_loader: Optional[ContextLoader] = None
    sort_field: str = "_id"


@dataclass(frozen=True)
class StepDescriptor:
    """A named, independently executable unit of the migration pipeline"""
    name: str
    target_collection: str
    sources: Tuple[SourceSpec, ...]
    auxiliary_collections: Tuple[str, ...] = ()
    description: str = ""

    @property
    def source_collections(self) -> List[str]:
        return [source.collection for source in self.sources]

    @property
    def legacy_collections(self) -> List[str]:
        """Collections dropped after a fully successful run"""
        return self.source_collections + list(self.auxiliary_collections)

    def validate(self):
        """Raise StepDefinitionError when the step cannot execute"""
        if not self.name:
            raise StepDefinitionError("Step has no name")
        if not self.target_collection:
            raise StepDefinitionError("Step has no target collection", self.name)
        if not self.sources:
            raise StepDefinitionError("Step has no source collection", self.name)

        seen = set()
        for source in self.sources:
            if not source.collection:
                raise StepDefinitionError("Source without a collection name", self.name)
            if source.collection in seen:
                raise StepDefinitionError(f"Source {source.collection} listed twice", self.name)
            seen.add(source.collection)
            if source.collection == self.target_collection:
                raise StepDefinitionError(
                    f"Source and target are both '{source.collection}'", self.name)
            if not callable(source.transform):
                raise StepDefinitionError(f"Transform of {source.collection} is not callable", self.name)
            if not callable(source.natural_key):
                raise StepDefinitionError(
                    f"Source {source.collection} needs a natural key function", self.name)
            if source.context_loader is not None and not callable(source.context_loader):
                raise StepDefinitionError(
                    f"Context loader of {source.collection} is not callable", self.name)


class StepRegistry:
    """Ordered list of step descriptors; order of registration is execution order"""

    def __init__(self, steps: Sequence[StepDescriptor] = ()):
        self._steps: Dict[str, StepDescriptor] = {}
        for step in steps:
            self.register(step)

    def register(self, step: StepDescriptor) -> StepDescriptor:
        if not step.name:
            raise StepDefinitionError("Cannot register a step without a name")
        if step.name in self._steps:
            raise StepDefinitionError(f"Step '{step.name}' is already registered", step.name)
        self._steps[step.name] = step
        logger.debug(f"Registered step {step.name}")
        return step

    def get(self, name: str) -> StepDescriptor:
        try:
            return self._steps[name]
        except KeyError:
            raise StepDefinitionError(
                f"Unknown step '{name}'. Available steps: {', '.join(self.names())}", name
            ) from None

    def names(self) -> List[str]:
        return list(self._steps)

    def __contains__(self, name: str) -> bool:
        return name in self._steps

    def __iter__(self) -> Iterator[StepDescriptor]:
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)
