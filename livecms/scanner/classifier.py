"""
Element classifier - decides, node by node, what an operator may edit.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.schema import Classification, EDITABLE
from .rules import (
    ClassificationRule,
    ClassifierConfig,
    DEFAULT_RULES,
    RuleContext,
    UNKNOWN,
    is_element,
    tag_of,
)


class ElementClassifier:
    """Runs the ordered rule pipeline; the first rule that matches wins."""

    def __init__(self, rules: Sequence[ClassificationRule] = None, config: ClassifierConfig = None):
        self.rules = tuple(rules) if rules is not None else DEFAULT_RULES
        self.config = config or ClassifierConfig.from_env()

    def classify(self, node, ancestors: Sequence, context: RuleContext = None) -> Classification:
        """Classify one node given its ancestor chain (nearest parent first)."""
        context = context or RuleContext(config=self.config)
        try:
            for rule in self.rules:
                result = rule.evaluate(node, ancestors, context)
                if result is not None:
                    return result
        except Exception:
            # Unclassifiable markup is never a user-facing failure
            return Classification.ignored(UNKNOWN, "error")
        return Classification.ignored(UNKNOWN, "no_rule")

    def is_candidate(self, node) -> bool:
        return is_element(node) and tag_of(node) in self.config.candidate_tags

    def classify_tree(self, root) -> List[Tuple[object, Classification]]:
        """Classify every candidate under ``root``, returned in document order.

        Nodes are visited children-first so the nesting rule can see which
        descendants were already judged editable.
        """
        context = RuleContext(config=self.config)
        verdicts: Dict[object, Classification] = {}

        for node, ancestors in _post_order(root):
            if not self.is_candidate(node):
                continue
            classification = self.classify(node, ancestors, context)
            verdicts[node] = classification
            if classification.kind == EDITABLE:
                context.editable_nodes.add(node)

        return [(node, verdicts[node]) for node in root.iter() if node in verdicts]


def _post_order(root) -> Iterable[Tuple[object, List]]:
    """Yield (node, ancestors) children-first without recursion."""
    stack = [(root, [], False)]
    while stack:
        node, ancestors, expanded = stack.pop()
        if expanded:
            yield node, ancestors
            continue
        stack.append((node, ancestors, True))
        child_ancestors = [node] + ancestors
        children = [child for child in node if is_element(child)]
        for child in reversed(children):
            stack.append((child, child_ancestors, False))


_default_classifier: Optional[ElementClassifier] = None


def get_classifier() -> ElementClassifier:
    """Lazy initialization of the shared classifier (it holds no per-scan state)."""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = ElementClassifier()
    return _default_classifier


def classify(node, ancestors: Sequence, context: RuleContext = None) -> Classification:
    """Classify a single node with the default rule pipeline."""
    return get_classifier().classify(node, ancestors, context)


def report_classifications(results, log=None) -> Dict[str, int]:
    """Diagnostic pass over finished results: log each matched rule, count by rule."""
    if log is None:
        from ..util.logging import logger as log

    counts: Dict[str, int] = {}
    for item in results:
        if isinstance(item, tuple):
            node, classification = item
            tag, content_id = tag_of(node), node.get("data-cms-id")
        else:
            classification = item.classification
            tag, content_id = item.tag, item.content_id
        counts[classification.rule] = counts.get(classification.rule, 0) + 1
        log.log_classification(tag, classification.kind, classification.rule,
                               classification.reason, content_id)
    return counts
