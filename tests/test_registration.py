"""Tests for registering entity classes for tenant scoping."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from tenantguard.multitenancy import (
    ConfigurationError,
    MissingTenantError,
    TenantContext,
    default_registry,
    for_current_tenant,
    for_tenant,
    get_registration,
    is_tenant_scoped,
    register_tenant_scoping,
    registrations,
)
from tenantguard.multitenancy.registration import resolve_tenant_binding

from tenancy_models import (
    Account,
    AliasedTask,
    CustomForeignKeyTask,
    Project,
    Task,
    UnscopedModel,
)


# ===========================================================================
# Binding resolution
# ===========================================================================

class TestResolveTenantBinding:
    """Tests for deriving attribute and owner names by convention."""

    def test_owner_from_attribute(self):
        assert resolve_tenant_binding("account_id") == ("account_id", "Account")

    def test_attribute_from_owner_name(self):
        assert resolve_tenant_binding(tenant_entity="account") == ("account_id", "Account")

    def test_attribute_from_owner_class(self):
        assert resolve_tenant_binding(tenant_entity=Account) == ("account_id", "Account")

    def test_camel_case_owner(self):
        assert resolve_tenant_binding(tenant_entity="BusinessUnit") == (
            "business_unit_id",
            "BusinessUnit",
        )

    def test_snake_case_attribute(self):
        assert resolve_tenant_binding("business_unit_id") == (
            "business_unit_id",
            "BusinessUnit",
        )

    def test_both_given(self):
        assert resolve_tenant_binding("accountID", "account") == ("accountID", "Account")

    def test_unconventional_attribute_leaves_owner_unknown(self):
        assert resolve_tenant_binding("owner") == ("owner", None)

    def test_neither_given(self):
        with pytest.raises(ConfigurationError):
            resolve_tenant_binding()


# ===========================================================================
# register_tenant_scoping
# ===========================================================================

class TestRegisterTenantScoping:
    """Tests for the registration call."""

    def test_registered_classes_are_tenant_scoped(self):
        assert Project.is_tenant_scoped()
        assert Task.is_tenant_scoped()
        assert is_tenant_scoped(CustomForeignKeyTask)

    def test_other_classes_are_not(self):
        assert not UnscopedModel.is_tenant_scoped()
        assert not Account.is_tenant_scoped()
        assert UnscopedModel.tenant_registration() is None

    def test_registration_records_binding(self):
        reg = get_registration(Project)
        assert reg.entity is Project
        assert reg.tenant_attribute == "account_id"
        assert reg.tenant_entity == "Account"
        assert reg.filter_name == "multitenant"
        assert reg.is_tenant_owner(Account)
        assert not reg.is_tenant_owner(Project)

    def test_custom_foreign_key_registration(self):
        reg = CustomForeignKeyTask.tenant_registration()
        assert reg.tenant_attribute == "accountID"
        assert reg.tenant_entity == "Account"

    def test_registration_is_frozen(self):
        reg = get_registration(Task)
        with pytest.raises(AttributeError):
            reg.tenant_attribute = "other_id"

    def test_tenant_filter_installed_first(self):
        names = [f.name for f in default_registry.filters_for(Task)]
        assert names == ["multitenant", "incomplete"]

    def test_registrations_lists_each_class_once(self):
        entities = [r.entity for r in registrations()]
        for cls in (Project, Task, AliasedTask, CustomForeignKeyTask):
            assert entities.count(cls) == 1

    def test_double_registration_fails(self):
        with pytest.raises(ConfigurationError, match="more than once"):
            register_tenant_scoping(Project, "account_id")

    def test_unmapped_class_fails(self):
        class Plain:
            account_id = None

        with pytest.raises(ConfigurationError, match="not a mapped class"):
            register_tenant_scoping(Plain, "account_id")

    def test_missing_attribute_fails(self):
        with pytest.raises(ConfigurationError, match="no mapped column attribute"):
            register_tenant_scoping(UnscopedModel, "account_id")
        assert not UnscopedModel.is_tenant_scoped()
        assert default_registry.filters_for(UnscopedModel) == []

    def test_unresolvable_binding_fails(self):
        with pytest.raises(ConfigurationError):
            register_tenant_scoping(UnscopedModel)

    def test_get_registration_for_unscoped_class(self):
        with pytest.raises(ConfigurationError, match="not tenant scoped"):
            get_registration(UnscopedModel)


# ===========================================================================
# Query helpers
# ===========================================================================

class TestQueryHelpers:
    """Tests for for_tenant / for_current_tenant."""

    def test_for_tenant_filters_on_attribute(self):
        sql = str(Project.for_tenant(3))
        assert "WHERE projects.account_id = " in sql

    def test_for_tenant_uses_custom_attribute(self):
        sql = str(for_tenant(CustomForeignKeyTask, 3))
        assert 'custom_foreign_key_tasks."accountID" = ' in sql

    def test_for_current_tenant_requires_tenant(self):
        with pytest.raises(MissingTenantError):
            for_current_tenant(Project)

    def test_for_current_tenant_binds_current_value(self):
        with TenantContext(5):
            stmt = Project.for_current_tenant()
        compiled = stmt.compile()
        assert 5 in compiled.params.values()

    def test_for_tenant_on_unscoped_class(self):
        with pytest.raises(ConfigurationError):
            for_tenant(UnscopedModel, 1)

    def test_building_filtered_statement_needs_no_tenant(self):
        """The tenant is only read when a statement executes."""
        stmt = default_registry.apply_filters(Project, select(Project))
        assert "projects.account_id = " in str(stmt)
