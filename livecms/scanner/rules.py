"""
Classifier rules - ordered exclusion pipeline for rendered elements.

Each rule looks at one node plus its ancestor chain (nearest parent first)
and returns either ``None`` ("no match, keep going") or a terminal
``Classification``. Rules never log and never mutate the tree; reporting is
done by the caller over the finished results.
"""

import re
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Sequence, Set, Tuple

from ..core import config
from ..core.schema import Classification

# Reasons surfaced to the editor UI
TOOLING = "toolingOrInjected"
DROPDOWN = "dropdown"
HEADER_FOOTER = "headerFooter"
EMPTY = "empty"
NESTED_EDITABLE = "nestedEditable"
UNKNOWN = "unknown"

TEMPLATE_VARIABLE = "templateVariable"
RECORD_ATTRIBUTE = "recordAttribute"
LISTING_CLASS = "listingClass"
LOOP_SIGNATURE = "loopSignature"
PAGINATION = "pagination"
COLLECTION_ATTRIBUTE = "collectionAttribute"

DYNAMIC_MESSAGES = {
    TEMPLATE_VARIABLE: "Dynamic content: rendered from a template variable. Edit the data source instead.",
    RECORD_ATTRIBUTE: "Dynamic content: bound to a database record. Edit the record instead.",
    LISTING_CLASS: "Dynamic content: part of a generated listing. Edit the listing data instead.",
    LOOP_SIGNATURE: "Dynamic content: repeated by a template loop. Edit the data source instead.",
    PAGINATION: "Dynamic content: part of a paginated collection. Edit the data source instead.",
    COLLECTION_ATTRIBUTE: "Dynamic content: rendered from a collection. Edit the data source instead.",
}

HEADING_TAGS = frozenset(["h1", "h2", "h3", "h4", "h5", "h6"])

DEFAULT_CANDIDATE_TAGS = frozenset([
    "p", "h1", "h2", "h3", "h4", "h5", "h6", "span", "a", "img",
    "li", "td", "th", "dt", "dd", "blockquote", "figcaption", "caption",
    "label", "button", "strong", "em", "small",
    "div", "article", "section", "aside", "main",
])
DEFAULT_EMPTY_ALLOWED_TAGS = frozenset(["img", "a", "picture", "video", "audio", "source", "iframe"])
LOOP_ITEM_TAGS = frozenset(["li", "tr", "article", "dt", "dd", "figure"])

CMS_PREFIX = "cms-"
RESERVED_UI_ATTRIBUTES = frozenset(["data-cms-toolbar", "data-cms-ui", "data-cms-widget", "data-cms-ignore"])

DROPDOWN_ROLES = frozenset(["menu", "menubar", "menuitem", "listbox", "combobox", "option"])
DROPDOWN_TAGS = frozenset(["select", "option", "optgroup", "datalist"])
DROPDOWN_CLASS_PREFIXES = (
    "dropdown", "select2", "choices", "chosen-", "ts-dropdown", "ts-control",
    "tom-select", "bootstrap-select", "nice-select", "ui-menu", "autocomplete",
)

HEADER_FOOTER_TAGS = frozenset(["header", "footer", "nav"])
HEADER_FOOTER_ROLES = frozenset(["banner", "navigation", "contentinfo"])
HEADER_FOOTER_TOKENS = frozenset([
    "header", "footer", "navbar", "nav", "navigation", "masthead", "topbar", "top-bar",
    "site-header", "site-footer", "page-header", "page-footer", "main-nav", "site-nav",
    "main-navigation", "breadcrumb", "breadcrumbs",
])
HEADER_FOOTER_PREFIXES = ("navbar", "site-header", "site-footer", "footer-", "header-")

TEMPLATE_VARIABLE_RE = re.compile(
    r"\{\{.*?\}\}|\{!!.*?!!\}|\{%.*?%\}|<%.*?%>|\$\{[^}]*\}|@\{[^}]*\}|\{\$[^}]*\}",
    re.DOTALL
)
RECORD_ATTRIBUTE_RE = re.compile(
    r"^data-(?!cms-)(?!test)(?:id|pk|uuid|record|entity|model|[a-z0-9]+(?:-[a-z0-9]+)*-id)$"
)
COLLECTION_ATTRIBUTES = frozenset([
    "data-items", "data-collection", "data-results", "data-list", "data-loop",
    "data-repeat", "data-foreach", "data-each", "x-for", "v-for", "ng-repeat",
])
PAGINATION_TOKENS = ("pagination", "pager", "page-numbers", "paginate", "load-more")


@dataclass
class ClassifierConfig:
    """Tunable vocabularies and thresholds for the classifier."""
    loop_sibling_threshold: int = 3
    listing_class_prefixes: Tuple[str, ...] = ("product-", "post-", "comment-", "category-")
    candidate_tags: FrozenSet[str] = DEFAULT_CANDIDATE_TAGS
    empty_allowed_tags: FrozenSet[str] = DEFAULT_EMPTY_ALLOWED_TAGS
    pagination_depth: int = 3

    @classmethod
    def from_env(cls) -> 'ClassifierConfig':
        """Build a config from environment-driven settings."""
        return cls(
            loop_sibling_threshold=config.LOOP_SIBLING_THRESHOLD,
            listing_class_prefixes=tuple(config.LISTING_CLASS_PREFIXES),
        )


@dataclass
class RuleContext:
    """Per-scan state a rule may read: configuration and verdicts so far."""
    config: ClassifierConfig = field(default_factory=ClassifierConfig)
    editable_nodes: Set = field(default_factory=set)


# Element helpers

def is_element(node) -> bool:
    """True for element nodes (lxml yields comments and PIs with callable tags)."""
    return isinstance(getattr(node, "tag", None), str)


def tag_of(node) -> str:
    return node.tag.lower() if is_element(node) else ""


def class_tokens(node) -> List[str]:
    return (node.get("class") or "").lower().split()


def identity_tokens(node) -> List[str]:
    """Class tokens plus the id, lowercased."""
    tokens = class_tokens(node)
    node_id = (node.get("id") or "").strip().lower()
    if node_id:
        tokens.append(node_id)
    return tokens


def element_text(node) -> str:
    try:
        return node.text_content()
    except AttributeError:
        return "".join(node.itertext())


def element_children(node) -> List:
    return [child for child in node if is_element(child)]


def structural_signature(node) -> Tuple:
    """Tag, classes and child tag sequence - what a template loop repeats."""
    return (
        tag_of(node),
        tuple(sorted(class_tokens(node))),
        tuple(tag_of(child) for child in element_children(node)),
    )


def content_type_for(node) -> str:
    tag = tag_of(node)
    if tag in HEADING_TAGS:
        return "heading"
    if tag == "img":
        return "image"
    if tag == "a":
        return "link"
    return "text"


def _self_and_ancestors(node, ancestors: Sequence) -> List:
    return [node] + [a for a in ancestors if is_element(a)]


# Rules

class ClassificationRule:
    """A named rule in the classifier pipeline."""

    name = "rule"

    def evaluate(self, node, ancestors: Sequence, context: RuleContext) -> Optional[Classification]:
        raise NotImplementedError

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name}>"


class AlreadyTaggedRule(ClassificationRule):
    """Re-scanning tagged markup returns the verdict already written into it."""

    name = "already_tagged"

    def evaluate(self, node, ancestors, context):
        if node.get("data-cms-editable") == "true":
            content_type = node.get("data-cms-type") or content_type_for(node)
            return Classification.editable(content_type, rule=self.name)
        if node.get("data-cms-component") == "true":
            reason = node.get("data-cms-reason") or UNKNOWN
            message = node.get("data-cms-message") or DYNAMIC_MESSAGES.get(reason, "Dynamic content")
            return Classification.component(reason, message, rule=self.name)
        return None


class ToolingRule(ClassificationRule):
    """Toolbars and widgets injected by the CMS itself."""

    name = "tooling"

    def evaluate(self, node, ancestors, context):
        for candidate in _self_and_ancestors(node, ancestors):
            if any(token.startswith(CMS_PREFIX) for token in identity_tokens(candidate)):
                return Classification.ignored(TOOLING, self.name)
            if RESERVED_UI_ATTRIBUTES.intersection(candidate.attrib.keys()):
                return Classification.ignored(TOOLING, self.name)
        return None


class DropdownRule(ClassificationRule):
    """Selection widgets: their labels are options, not copy."""

    name = "dropdown"

    def evaluate(self, node, ancestors, context):
        for candidate in _self_and_ancestors(node, ancestors):
            if tag_of(candidate) in DROPDOWN_TAGS:
                return Classification.ignored(DROPDOWN, self.name)
            if (candidate.get("role") or "").lower() in DROPDOWN_ROLES:
                return Classification.ignored(DROPDOWN, self.name)
            if any(token.startswith(DROPDOWN_CLASS_PREFIXES) for token in class_tokens(candidate)):
                return Classification.ignored(DROPDOWN, self.name)
            toggle = candidate.get("data-toggle") or candidate.get("data-bs-toggle") or ""
            if toggle.lower() == "dropdown":
                return Classification.ignored(DROPDOWN, self.name)
        return None


class HeaderFooterRule(ClassificationRule):
    """Site chrome: banners, navigation and footers."""

    name = "header_footer"

    def evaluate(self, node, ancestors, context):
        for candidate in _self_and_ancestors(node, ancestors):
            if tag_of(candidate) in HEADER_FOOTER_TAGS:
                return Classification.ignored(HEADER_FOOTER, self.name)
            if (candidate.get("role") or "").lower() in HEADER_FOOTER_ROLES:
                return Classification.ignored(HEADER_FOOTER, self.name)
            for token in identity_tokens(candidate):
                if token in HEADER_FOOTER_TOKENS or token.startswith(HEADER_FOOTER_PREFIXES):
                    return Classification.ignored(HEADER_FOOTER, self.name)
        return None


class DynamicContentRule(ClassificationRule):
    """Content that came from a database or a template loop."""

    name = "dynamic_content"

    def evaluate(self, node, ancestors, context):
        reason = self.detect(node, ancestors, context.config)
        if reason is None:
            return None
        return Classification.component(reason, DYNAMIC_MESSAGES[reason], rule=self.name)

    def detect(self, node, ancestors, cfg: ClassifierConfig) -> Optional[str]:
        chain = _self_and_ancestors(node, ancestors)

        if TEMPLATE_VARIABLE_RE.search(element_text(node)):
            return TEMPLATE_VARIABLE

        for candidate in chain:
            if any(RECORD_ATTRIBUTE_RE.match(attr.lower()) for attr in candidate.attrib.keys()):
                return RECORD_ATTRIBUTE

        prefixes = tuple(p.lower() for p in cfg.listing_class_prefixes)
        if prefixes:
            for candidate in chain:
                if any(token.startswith(prefixes) for token in class_tokens(candidate)):
                    return LISTING_CLASS

        if self._has_loop_signature(chain, cfg.loop_sibling_threshold):
            return LOOP_SIGNATURE

        if self._near_pagination(chain, cfg.pagination_depth):
            return PAGINATION

        for candidate in chain[1:]:
            if COLLECTION_ATTRIBUTES.intersection(attr.lower() for attr in candidate.attrib.keys()):
                return COLLECTION_ATTRIBUTE

        return None

    @staticmethod
    def _has_loop_signature(chain, threshold: int) -> bool:
        for candidate in chain:
            if tag_of(candidate) in ("body", "html"):
                break
            if tag_of(candidate) not in LOOP_ITEM_TAGS and not candidate.get("class"):
                continue
            parent = candidate.getparent()
            if parent is None:
                break
            signature = structural_signature(candidate)
            similar = sum(1 for sibling in element_children(parent) if structural_signature(sibling) == signature)
            if similar >= threshold:
                return True
        return False

    @staticmethod
    def _is_pagination(node) -> bool:
        if any(marker in token for token in identity_tokens(node) for marker in PAGINATION_TOKENS):
            return True
        if "pagination" in (node.get("aria-label") or "").lower():
            return True
        return (node.get("rel") or "").lower() in ("next", "prev")

    def _near_pagination(self, chain, depth: int) -> bool:
        for candidate in chain[:depth + 1]:
            if tag_of(candidate) in ("body", "html"):
                break
            if self._is_pagination(candidate):
                return True
            parent = candidate.getparent()
            if parent is None:
                break
            for sibling in element_children(parent):
                if sibling is candidate:
                    continue
                if self._is_pagination(sibling):
                    return True
                if any(self._is_pagination(child) for child in sibling.iterdescendants() if is_element(child)):
                    return True
        return False


class EmptyContentRule(ClassificationRule):
    """Nothing to edit, unless the element is media or a link."""

    name = "empty"

    def evaluate(self, node, ancestors, context):
        if tag_of(node) in context.config.empty_allowed_tags:
            return None
        if element_text(node).strip():
            return None
        return Classification.ignored(EMPTY, self.name)


class NestedEditableRule(ClassificationRule):
    """Outer blocks holding an editable child would give two edit targets."""

    name = "nested_editable"

    def evaluate(self, node, ancestors, context):
        if not context.editable_nodes:
            return None
        for descendant in node.iterdescendants():
            if descendant in context.editable_nodes:
                return Classification.ignored(NESTED_EDITABLE, self.name)
        return None


class EditableRule(ClassificationRule):
    """Fallback: everything that survived the exclusions is editable."""

    name = "editable"

    def evaluate(self, node, ancestors, context):
        return Classification.editable(content_type_for(node), rule=self.name)


DEFAULT_RULES = (
    AlreadyTaggedRule(),
    ToolingRule(),
    DropdownRule(),
    HeaderFooterRule(),
    DynamicContentRule(),
    EmptyContentRule(),
    NestedEditableRule(),
    EditableRule(),
)
