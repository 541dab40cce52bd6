"""
Declarative site profile schema.

One profile describes one target site: how to reach its search results
(``searchUrlTemplate`` and/or ``navigationFlow``) and how to read rows out of
the resulting page (``extraction``). Keys are accepted in camelCase, as they
appear in the profile files, or in snake_case.

Example::

    {
      "id": "pilulka",
      "name": "Pilulka.sk",
      "searchUrlTemplate": "https://www.pilulka.sk/hladat?q={query}",
      "rateLimitSeconds": 5,
      "navigationFlow": [
        {"action": "wait_for_selector", "selector": "div.product-list", "timeoutMs": 10000}
      ],
      "extraction": {
        "iterateRows": "div.product-card",
        "fields": {
          "name": {"selector": "h3"},
          "price": {"selector": ".price"},
          "availability": {"selector": ".stock"}
        }
      }
    }
"""
from __future__ import annotations

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import quote, urlsplit

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..version import PROFILE_SCHEMA_VERSION

DEFAULT_SCAN_TIMEOUT_MS = 8000
DEFAULT_NAVIGATION_TIMEOUT_MS = 30000
DEFAULT_RESPONSE_CAPTURE = "availabilityApiJson"

#: Page phrases meaning "the search returned nothing".
DEFAULT_NO_RESULTS_PHRASES = [
    "nenašli sme žiadne",
    "nenašli sa žiadne",
    "žiadne výsledky",
    "nenájdené",
    "no results",
]

# Compact (lower-case, no separators) spelling -> canonical action name.
_ACTION_ALIASES = {
    "navigate": "navigate",
    "goto": "navigate",
    "fill": "fill",
    "type": "fill",
    "click": "click",
    "waitforselector": "wait_for_selector",
    "waitforresponse": "wait_for_response",
    "extractattribute": "extract_attribute",
    "runprompt": "run_prompt",
    "prompt": "run_prompt",
}


def normalize_action(action: Any) -> Any:
    if not isinstance(action, str):
        return action
    compact = re.sub(r"[\s_-]+", "", action).lower()
    return _ACTION_ALIASES.get(compact, action)


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a URL regex, accepting the ``/.../`` form used in profile files."""
    text = pattern.strip()
    if len(text) >= 2 and text.startswith("/") and text.endswith("/"):
        text = text[1:-1]
    return re.compile(text)


def _check_pattern(value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            compile_pattern(value)
        except re.error as exc:
            raise ValueError(f"invalid regex {value!r}: {exc}") from exc
    return value


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


# ---------- Navigation steps ----------


class _Step(_Model):
    comment: Optional[str] = None
    required: Optional[bool] = None

    @property
    def is_required(self) -> bool:
        return True if self.required is None else self.required


class NavigateStep(_Step):
    action: Literal["navigate"]
    url: str = Field(min_length=1)
    timeout_ms: Optional[PositiveInt] = None


class FillStep(_Step):
    action: Literal["fill"]
    selector: str = Field(min_length=1)
    value: Optional[str] = None
    value_from_input: Optional[Literal["searchTerm", "query", "product"]] = None
    clear_first: bool = False
    type_delay_ms: int = Field(default=50, ge=0)
    timeout_ms: Optional[PositiveInt] = None

    @model_validator(mode="after")
    def _one_value_source(self) -> "FillStep":
        if (self.value is None) == (self.value_from_input is None):
            raise ValueError("fill step needs exactly one of 'value' or 'valueFromInput'")
        return self

    def resolve_value(self, query: str) -> str:
        return query if self.value_from_input is not None else (self.value or "")


class AttributeCapture(_Model):
    name: str = Field(min_length=1)
    attribute: str = Field(min_length=1)


class ClickStep(_Step):
    action: Literal["click"]
    selector: str = Field(min_length=1)
    timeout_ms: Optional[PositiveInt] = None
    # Read from the element being clicked, e.g. the id of a picked suggestion.
    extract_attribute: Optional[AttributeCapture] = None


class WaitForSelectorStep(_Step):
    action: Literal["wait_for_selector"]
    selector: str = Field(min_length=1)
    timeout_ms: Optional[PositiveInt] = None


class WaitForResponseStep(_Step):
    action: Literal["wait_for_response"]
    match_regex: Optional[str] = None
    timeout_ms: Optional[PositiveInt] = None
    capture_name: str = DEFAULT_RESPONSE_CAPTURE

    @property
    def is_required(self) -> bool:
        # A missed response is recoverable unless the profile insists.
        return bool(self.required)

    @field_validator("match_regex")
    @classmethod
    def _compiles(cls, value: Optional[str]) -> Optional[str]:
        return _check_pattern(value)


class ExtractAttributeStep(_Step):
    action: Literal["extract_attribute"]
    selector: str = Field(min_length=1)
    attribute: str = Field(min_length=1)
    name: str = Field(min_length=1)
    timeout_ms: Optional[PositiveInt] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_legacy(cls, data: Any) -> Any:
        # {"extractAttribute": {"name": ..., "attribute": ...}}
        if isinstance(data, dict) and isinstance(data.get("extractAttribute"), dict):
            nested = data["extractAttribute"]
            data = {k: v for k, v in data.items() if k != "extractAttribute"}
            data.setdefault("name", nested.get("name"))
            data.setdefault("attribute", nested.get("attribute"))
        return data


class RunPromptStep(_Step):
    action: Literal["run_prompt"]
    prompt: str = Field(min_length=1)


NavigationStep = Annotated[
    Union[
        NavigateStep,
        FillStep,
        ClickStep,
        WaitForSelectorStep,
        WaitForResponseStep,
        ExtractAttributeStep,
        RunPromptStep,
    ],
    Field(discriminator="action"),
]


# ---------- Extraction ----------


class FieldRule(_Model):
    selector: str = Field(min_length=1)
    type: Literal["text", "number", "attribute"] = "text"
    attribute: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_types(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("type"), str):
            data = dict(data)
            kind = data["type"].lower()
            if kind == "href":
                data["attribute"] = data.get("attribute") or "href"
                kind = "attribute"
            data["type"] = kind
        return data

    @property
    def attribute_name(self) -> str:
        return self.attribute or "href"


class ExtractionRules(_Model):
    iterate_rows: Optional[str] = None
    fields: Dict[str, FieldRule] = Field(default_factory=dict)
    fallback_iterate_rows: Optional[str] = None
    fallback_fields: Optional[Dict[str, FieldRule]] = None
    no_results_selector: Optional[str] = None
    no_results_phrases: List[str] = Field(default_factory=lambda: list(DEFAULT_NO_RESULTS_PHRASES))

    @property
    def has_fallback(self) -> bool:
        return self.fallback_iterate_rows is not None or self.fallback_fields is not None

    def fallback(self) -> "ExtractionRules":
        """The fallback pair as a rule set of its own (fields default to the primary ones)."""
        return self.model_copy(
            update={
                "iterate_rows": self.fallback_iterate_rows,
                "fields": self.fallback_fields if self.fallback_fields is not None else self.fields,
                "fallback_iterate_rows": None,
                "fallback_fields": None,
            }
        )


# ---------- Hints ----------


class NetworkHints(_Model):
    wait_for_response_regex: Optional[str] = None
    persist_availability_api_json: bool = False

    @field_validator("wait_for_response_regex")
    @classmethod
    def _compiles(cls, value: Optional[str]) -> Optional[str]:
        return _check_pattern(value)


class Geolocation(_Model):
    enable: bool = False
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    origin: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.enable and self.latitude is not None and self.longitude is not None


class Metadata(_Model):
    requires_javascript: Optional[bool] = None
    spa: Optional[bool] = None


# ---------- Profile ----------


# Keys of the old flat ``selectors`` block that drove a typeahead search.
_TYPEAHEAD_SELECTORS = ("input", "inputFallback", "results", "resultItem", "suggestionIdAttribute")


def _pick(data: Dict[str, Any], camel: str, snake: str) -> Any:
    return data[camel] if camel in data else data.get(snake)


def expand_legacy_selectors(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rewrite the old flat ``selectors`` block into ``extraction``, ``network``,
    ``scanTimeoutMs`` and a results-table wait. Explicit new-style settings win.
    The typeahead keys have no flat equivalent and are rejected.
    """
    data = dict(data)
    selectors = data.pop("selectors")
    if selectors is None:
        return data
    if not isinstance(selectors, dict):
        raise ValueError("selectors must be a mapping")

    typeahead = [key for key in _TYPEAHEAD_SELECTORS if selectors.get(key)]
    if typeahead:
        raise ValueError(
            f"selectors.{', selectors.'.join(typeahead)}: typeahead search is not supported in the "
            "selectors block; describe it as navigationFlow steps (fill, click with extractAttribute)"
        )

    if selectors.get("scanTimeoutMs") is not None and _pick(data, "scanTimeoutMs", "scan_timeout_ms") is None:
        data["scanTimeoutMs"] = selectors["scanTimeoutMs"]

    network = dict(data.get("network") or {})
    if selectors.get("waitForResponseRegex") and not _pick(network, "waitForResponseRegex", "wait_for_response_regex"):
        network["waitForResponseRegex"] = selectors["waitForResponseRegex"]
    if selectors.get("persistAvailabilityApiJson") and not _pick(
        network, "persistAvailabilityApiJson", "persist_availability_api_json"
    ):
        network["persistAvailabilityApiJson"] = True
    if network:
        data["network"] = network

    extraction = data.get("extraction")
    if extraction is None:
        table, row = selectors.get("resultsTable"), selectors.get("resultRow")
        if table and row:
            extraction = {
                "iterateRows": row,
                "fields": {
                    "name": {"selector": selectors.get("title") or "td.name"},
                    "priceText": {"selector": selectors.get("price") or "td.price"},
                    "availabilityText": {"selector": selectors.get("availability") or "td.stock"},
                },
            }
            flow_key = "navigation_flow" if "navigation_flow" in data else "navigationFlow"
            flow = list(data.get(flow_key) or [])
            flow.append({"action": "wait_for_selector", "selector": table, "required": False})
            data[flow_key] = flow
        else:
            fields = {
                name: {"selector": selectors[key]}
                for key, name in (("title", "title"), ("price", "priceText"), ("availability", "availabilityText"))
                if selectors.get(key)
            }
            if fields:
                extraction = {"fields": fields}
    if selectors.get("noResults"):
        if extraction is None:
            raise ValueError("selectors.noResults needs title/price selectors or an extraction block")
        extraction = dict(extraction)
        if not _pick(extraction, "noResultsSelector", "no_results_selector"):
            extraction["noResultsSelector"] = selectors["noResults"]
    if extraction is not None:
        data["extraction"] = extraction
    return data


class SiteProfile(_Model):
    schema_version: int = PROFILE_SCHEMA_VERSION
    id: str = Field(min_length=1)
    name: str = ""
    search_url_template: Optional[str] = None
    warmup_homepage: bool = False
    navigation_flow: Optional[List[NavigationStep]] = Field(default=None, min_length=1)
    extraction: Optional[ExtractionRules] = None
    rate_limit_seconds: Optional[float] = Field(default=None, ge=0)
    scan_timeout_ms: PositiveInt = DEFAULT_SCAN_TIMEOUT_MS
    network: Optional[NetworkHints] = None
    geolocation: Optional[Geolocation] = None
    metadata: Optional[Metadata] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_selectors(cls, data: Any) -> Any:
        if isinstance(data, dict) and "selectors" in data:
            data = expand_legacy_selectors(data)
        return data

    @field_validator("navigation_flow", mode="before")
    @classmethod
    def _normalize_actions(cls, steps: Any) -> Any:
        if not isinstance(steps, list):
            return steps
        out = []
        for step in steps:
            if isinstance(step, dict) and "action" in step:
                step = {**step, "action": normalize_action(step["action"])}
            out.append(step)
        return out

    @model_validator(mode="after")
    def _check_flow(self) -> "SiteProfile":
        if not self.search_url_template and not self.navigation_flow:
            raise ValueError("profile needs a searchUrlTemplate or a navigationFlow")
        for index, step in enumerate(self.navigation_flow or []):
            if isinstance(step, WaitForResponseStep) and not self.response_regex(step):
                raise ValueError(
                    f"navigationFlow[{index}]: wait_for_response needs matchRegex "
                    "or network.waitForResponseRegex"
                )
        return self

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def is_spa(self) -> bool:
        return bool(self.metadata and self.metadata.spa)

    @property
    def persist_api_json(self) -> bool:
        return bool(self.network and self.network.persist_availability_api_json)

    def response_regex(self, step: WaitForResponseStep) -> Optional[str]:
        if step.match_regex:
            return step.match_regex
        return self.network.wait_for_response_regex if self.network else None

    def render_search_url(self, query: str) -> Optional[str]:
        if not self.search_url_template:
            return None
        return self.search_url_template.replace("{query}", quote(query, safe=""))

    def homepage_url(self, query: str) -> Optional[str]:
        url = self.render_search_url(query)
        if not url:
            return None
        parts = urlsplit(url)
        return f"{parts.scheme}://{parts.netloc}/"
