"""Tests for the override predicates applied after a base allow."""

from collections.abc import Callable

import pytest

from aumos_access_ledger.adapters.override_predicates import (
    DataMinimizationPredicate,
    LegalPrivilegePredicate,
    OwnershipPredicate,
)
from aumos_access_ledger.core.entities import DecisionCode, ResourceContext, Subject


class TestLegalPrivilegePredicate:
    @pytest.fixture
    def predicate(self) -> LegalPrivilegePredicate:
        return LegalPrivilegePredicate()

    def test_ignores_non_documents(self, predicate: LegalPrivilegePredicate, make_subject: Callable[..., Subject]) -> None:
        resource = ResourceContext(resource_type="CASE", owner_type="CLIENT")
        assert predicate.check(make_subject("PARALEGAL"), "CASE_VIEW", resource) is None

    def test_client_document_requires_attorney_client_relationship(
        self, predicate: LegalPrivilegePredicate, make_subject: Callable[..., Subject]
    ) -> None:
        resource = ResourceContext(resource_type="DOCUMENT", owner_type="CLIENT", relationship="NONE")
        decision = predicate.check(make_subject("ATTORNEY"), "DOCUMENT_VIEW", resource)
        assert decision is not None
        assert decision.code is DecisionCode.LEGAL_PRIVILEGE_VIOLATION

    def test_client_document_allowed_within_relationship(
        self, predicate: LegalPrivilegePredicate, make_subject: Callable[..., Subject]
    ) -> None:
        resource = ResourceContext(resource_type="document", owner_type="client", relationship="attorney_client")
        assert predicate.check(make_subject("ATTORNEY"), "DOCUMENT_VIEW", resource) is None

    def test_client_document_denied_to_unprivileged_role(
        self, predicate: LegalPrivilegePredicate, make_subject: Callable[..., Subject]
    ) -> None:
        resource = ResourceContext(resource_type="DOCUMENT", owner_type="CLIENT", relationship="ATTORNEY_CLIENT")
        decision = predicate.check(make_subject("LEGAL_SECRETARY"), "DOCUMENT_UPLOAD", resource)
        assert decision is not None
        assert not decision.allowed

    def test_work_product_excludes_third_parties(
        self, predicate: LegalPrivilegePredicate, make_subject: Callable[..., Subject]
    ) -> None:
        resource = ResourceContext(resource_type="DOCUMENT", owner_type="ATTORNEY")
        decision = predicate.check(make_subject("EXTERNAL_COUNSEL"), "DOCUMENT_VIEW_ASSIGNED", resource)
        assert decision is not None
        assert decision.code is DecisionCode.LEGAL_PRIVILEGE_VIOLATION
        assert predicate.check(make_subject("ADVOCATE"), "DOCUMENT_VIEW", resource) is None


class TestDataMinimizationPredicate:
    @pytest.fixture
    def predicate(self) -> DataMinimizationPredicate:
        return DataMinimizationPredicate()

    def test_requires_specific_purpose(
        self, predicate: DataMinimizationPredicate, make_subject: Callable[..., Subject]
    ) -> None:
        for purpose in (None, "general"):
            resource = ResourceContext(resource_type="CLIENT", purpose=purpose)
            decision = predicate.check(make_subject("ATTORNEY"), "CLIENT_MANAGE", resource)
            assert decision is not None
            assert decision.code is DecisionCode.DATA_MINIMIZATION_VIOLATION

    def test_secretary_barred_from_sensitive_data(
        self, predicate: DataMinimizationPredicate, make_subject: Callable[..., Subject]
    ) -> None:
        resource = ResourceContext(
            resource_type="CLIENT", data_category="PERSONAL_SENSITIVE", purpose="LITIGATION", encrypted=True
        )
        decision = predicate.check(make_subject("LEGAL_SECRETARY"), "CLIENT_COMMUNICATE", resource)
        assert decision is not None

    def test_sensitive_data_must_be_encrypted(
        self, predicate: DataMinimizationPredicate, make_subject: Callable[..., Subject]
    ) -> None:
        resource = ResourceContext(resource_type="CLIENT", data_category="PERSONAL_SENSITIVE", purpose="LITIGATION")
        assert predicate.check(make_subject("ATTORNEY"), "CLIENT_MANAGE", resource) is not None
        encrypted = ResourceContext(
            resource_type="CLIENT", data_category="PERSONAL_SENSITIVE", purpose="LITIGATION", encrypted=True
        )
        assert predicate.check(make_subject("ATTORNEY"), "CLIENT_MANAGE", encrypted) is None

    def test_client_representative_limited_to_own_client(
        self, predicate: DataMinimizationPredicate, make_subject: Callable[..., Subject]
    ) -> None:
        subject = make_subject("CLIENT_REPRESENTATIVE", subject_id="rep-1", client_id="client-1")
        own = ResourceContext(resource_type="CLIENT_DATA", client_id="client-1", purpose="SELF_SERVICE")
        other = ResourceContext(resource_type="CLIENT_DATA", client_id="client-2", purpose="SELF_SERVICE")

        assert predicate.check(subject, "CLIENT_DATA_VIEW", own) is None
        decision = predicate.check(subject, "CLIENT_DATA_VIEW", other)
        assert decision is not None
        assert decision.code is DecisionCode.DATA_MINIMIZATION_VIOLATION


class TestOwnershipPredicate:
    @pytest.fixture
    def predicate(self) -> OwnershipPredicate:
        return OwnershipPredicate()

    def test_only_applies_when_required(self, predicate: OwnershipPredicate, make_subject: Callable[..., Subject]) -> None:
        resource = ResourceContext(resource_type="DOCUMENT", owner_id="someone-else")
        assert predicate.check(make_subject("ATTORNEY"), "DOCUMENT_EDIT", resource) is None

    def test_owner_allowed_other_denied(self, predicate: OwnershipPredicate, make_subject: Callable[..., Subject]) -> None:
        resource = ResourceContext(resource_type="DOCUMENT", owner_id="user-1", requires_ownership=True)
        assert predicate.check(make_subject("ATTORNEY", subject_id="user-1"), "DOCUMENT_EDIT", resource) is None
        decision = predicate.check(make_subject("ATTORNEY", subject_id="user-2"), "DOCUMENT_EDIT", resource)
        assert decision is not None
        assert decision.code is DecisionCode.OWNERSHIP_VIOLATION

    def test_admin_roles_bypass(self, predicate: OwnershipPredicate, make_subject: Callable[..., Subject]) -> None:
        resource = ResourceContext(resource_type="DOCUMENT", owner_id="user-1", requires_ownership=True)
        assert predicate.check(make_subject("FIRM_ADMIN", subject_id="admin"), "DOCUMENT_MANAGE", resource) is None
