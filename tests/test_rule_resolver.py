from __future__ import annotations

import pytest

from catalog import Catalog
from conftest import FakeBrowserStack
from errors import ConfigurationError, ErrorKind, ServiceError
from folder_mapper import FolderMapper
from models import Category
from rule_resolver import RuleResolver


@pytest.fixture
def resolver(catalog: Catalog) -> RuleResolver:
    return RuleResolver(catalog)


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Homepage Analytics - Overall Performance", Category.HOMEPAGE),
        ("Overall Analytics - Homepage Metrics", Category.OVERALL),
        ("Usage Analytics Export", Category.USAGE),
        ("Onsite search widget", Category.ONSITE),
        ("Track on-site clicks on the home page", Category.ONSITE),
    ],
)
def test_leftmost_keyword_wins(resolver: RuleResolver, title: str, expected: Category) -> None:
    assert resolver.resolve(title) is expected


@pytest.mark.parametrize(
    "title",
    ["OVERALL-ANALYTICS-METRICS", "overall analytics", "Overall Analytics"],
)
def test_resolution_is_case_insensitive(resolver: RuleResolver, title: str) -> None:
    assert resolver.resolve(title) is Category.OVERALL
    assert resolver.has_keyword_match(title)


def test_no_match_returns_default(resolver: RuleResolver) -> None:
    title = "Fix login button alignment"
    assert resolver.resolve(title) is Category.OVERALL
    assert resolver.has_keyword_match(title) is False


def test_priority_only_breaks_ties_at_same_offset() -> None:
    rules = {
        "keywordPatterns": {"overall": ["metrics"], "usage": ["metrics dashboard"]},
        "priorityOrder": ["usage", "overall"],
        "defaultType": "overall",
        "ruleFiles": {"overall": "rules/overall.mdc", "usage": "rules/usage.mdc"},
    }
    folders = {"folderMapping": {"overall": 1, "usage": 2}}
    resolver = RuleResolver(Catalog.from_dicts(rules, folders))

    assert resolver.resolve("metrics dashboard rollout") is Category.USAGE
    assert resolver.resolve("New metrics") is Category.OVERALL


def test_rule_file_paths_and_types(resolver: RuleResolver) -> None:
    path = resolver.get_rule_file_path(Category.USAGE)
    assert path.name == "usage.mdc"
    assert path.is_absolute()
    assert resolver.get_types()[0] is Category.OVERALL
    assert resolver.get_default_type() is Category.OVERALL
    assert "Usage Analytics" in resolver.read_rule_document(Category.USAGE)


def test_missing_rule_document_is_not_found(tmp_path) -> None:
    rules = {
        "keywordPatterns": {"overall": ["overall"]},
        "priorityOrder": ["overall"],
        "defaultType": "overall",
        "ruleFiles": {"overall": "missing.mdc"},
    }
    catalog = Catalog.from_dicts(rules, {"folderMapping": {"overall": 1}}, base_dir=tmp_path)

    with pytest.raises(ServiceError, match="Rule file not found") as exc_info:
        RuleResolver(catalog).read_rule_document(Category.OVERALL)
    assert exc_info.value.kind is ErrorKind.NOT_FOUND


def test_catalog_rejects_category_without_folder() -> None:
    rules = {
        "keywordPatterns": {"overall": [], "usage": []},
        "priorityOrder": ["overall", "usage"],
        "defaultType": "overall",
        "ruleFiles": {"overall": "a.mdc", "usage": "b.mdc"},
    }
    with pytest.raises(ConfigurationError, match="No folder ID configured for type: usage"):
        Catalog.from_dicts(rules, {"folderMapping": {"overall": 1}})


def test_catalog_rejects_category_without_patterns() -> None:
    rules = {
        "keywordPatterns": {"overall": []},
        "priorityOrder": ["overall", "usage"],
        "defaultType": "overall",
        "ruleFiles": {"overall": "a.mdc", "usage": "b.mdc"},
    }
    with pytest.raises(ConfigurationError, match="No keyword patterns configured for type: usage"):
        Catalog.from_dicts(rules, {"folderMapping": {"overall": 1, "usage": 2}})


def test_catalog_rejects_unknown_category() -> None:
    rules = {
        "keywordPatterns": {"checkout": []},
        "priorityOrder": ["checkout"],
        "defaultType": "checkout",
        "ruleFiles": {"checkout": "a.mdc"},
    }
    with pytest.raises(ConfigurationError, match="Unknown category"):
        Catalog.from_dicts(rules, {"folderMapping": {"checkout": 1}})


def test_folder_mapper_lookups(catalog: Catalog) -> None:
    mapper = FolderMapper(catalog)
    assert mapper.get_folder_id(Category.HOMEPAGE) == 31450002
    assert mapper.get_folder_name(Category.OTHER) == "Other"
    assert mapper.get_type_by_folder_id(31450004) is Category.USAGE
    assert mapper.get_type_by_folder_id(1) is None
    assert len(mapper.get_all_mappings()) == 5
    assert mapper.subfolder_name("PA-1", "Usage Analytics Export") == "PA-1 - Usage Analytics Export"
    assert mapper.subfolder_name("PA-1", "") == "PA-1"


def test_ensure_task_folder_is_idempotent(catalog: Catalog) -> None:
    mapper = FolderMapper(catalog)
    client = FakeBrowserStack()
    calls = []

    def retry(call):
        calls.append(call)
        return call()

    first = mapper.ensure_task_folder(client, Category.USAGE, "PA-1", "Usage Analytics Export", retry=retry)
    second = mapper.ensure_task_folder(client, Category.USAGE, "PA-1", "usage analytics export")

    assert first.id == second.id
    assert first.parent_id == 31450004
    assert len(client.folders) == 1
    assert len(calls) == 1
