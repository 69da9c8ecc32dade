import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import aiomysql
import pytest

from ipam_reconciler.config.constants import DeploymentStatus, SyncEntity, SyncState
from ipam_reconciler.database import mysql_connection
from ipam_reconciler.database.allocation_ledger import AllocationLedgerStore
from ipam_reconciler.database.mapping_store import DeploymentMappingStore
from ipam_reconciler.database.migrations import MIGRATIONS, run_migrations
from ipam_reconciler.database.mysql_executor import is_duplicate_key, mysql_error_code
from ipam_reconciler.database.registry_cache import (
    PRE_CLEAR_ORDER, RegistryCacheStore, build_upsert_query
)
from ipam_reconciler.utils.error_handlers import SchemaMissing


def duplicate_entry(address="10.0.0.5"):
    return aiomysql.IntegrityError(1062, f"Duplicate entry '{address}' for key 'uq_allocation_address'")


def missing_table(table="allocation_records"):
    return aiomysql.ProgrammingError(1146, f"Table 'ipam.{table}' doesn't exist")


class TestErrorCodes:
    def test_duplicate_key_detection(self):
        assert is_duplicate_key(duplicate_entry())
        assert not is_duplicate_key(aiomysql.IntegrityError(1452, "Cannot add or update a child row"))
        assert not is_duplicate_key(ValueError("1062"))

    def test_error_code(self):
        assert mysql_error_code(missing_table()) == 1146
        assert mysql_error_code(RuntimeError("boom")) is None


class TestAllocationLedgerStore:
    def test_insert(self, fake_pool):
        store = AllocationLedgerStore(fake_pool)

        record = asyncio.run(store.insert("10.0.0.5", "SW-MAIN-01", subnet="10.0.0.0/24", vlan_id=100))

        assert record["address"] == "10.0.0.5"
        assert record["created_at"].tzinfo is not None
        (query, params) = fake_pool.cursor.executed[0]
        assert query.startswith("INSERT INTO allocation_records")
        assert params[:7] == ("10.0.0.5", 4, 167772165, "10.0.0.0/24", 100, "static", "SW-MAIN-01")
        assert params[7].tzinfo is None
        assert fake_pool.conn.commits == 1

    def test_duplicate_insert_returns_none(self, fake_pool):
        fake_pool.cursor.errors = [duplicate_entry()]

        assert asyncio.run(AllocationLedgerStore(fake_pool).insert("10.0.0.5", "SW-OTHER-01")) is None
        assert fake_pool.conn.rollbacks == 1

    def test_other_integrity_errors_propagate(self, fake_pool):
        fake_pool.cursor.errors = [aiomysql.IntegrityError(1452, "Cannot add or update a child row")]

        with pytest.raises(aiomysql.IntegrityError):
            asyncio.run(AllocationLedgerStore(fake_pool).insert("10.0.0.5", "SW-MAIN-01"))

    def test_missing_table(self, fake_pool):
        fake_pool.cursor.errors = [missing_table()]

        with pytest.raises(SchemaMissing):
            asyncio.run(AllocationLedgerStore(fake_pool).get("10.0.0.5"))

    def test_delete_locks_then_deletes(self, fake_pool):
        fake_pool.cursor.fetchone_results = [{
            "address": "10.0.0.5", "subnet": None, "vlan_id": None, "allocation_type": "static",
            "device_name": "SW-MAIN-01", "created_at": datetime(2026, 1, 5, 12, 0),
        }]

        record = asyncio.run(AllocationLedgerStore(fake_pool).delete("10.0.0.5"))

        assert record["device_name"] == "SW-MAIN-01"
        assert record["created_at"] == datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)
        select, delete = fake_pool.cursor.queries
        assert select.endswith("FOR UPDATE")
        assert delete == "DELETE FROM allocation_records WHERE address = %s"
        assert fake_pool.conn.begins == 1
        assert fake_pool.conn.commits == 1

    def test_delete_missing(self, fake_pool):
        assert asyncio.run(AllocationLedgerStore(fake_pool).delete("10.0.0.5")) is None
        assert len(fake_pool.cursor.executed) == 1

    def test_delete_orphans_returns_rowcount(self, fake_pool):
        fake_pool.cursor.rowcount = 3
        cutoff = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

        assert asyncio.run(AllocationLedgerStore(fake_pool).delete_orphans(cutoff)) == 3
        (query, params) = fake_pool.cursor.executed[0]
        assert "LEFT JOIN cached_addresses" in query
        assert params == (datetime(2026, 1, 5, 12, 0),)

    def test_count_in_range(self, fake_pool):
        fake_pool.cursor.fetchone_results = [{"total": 2}]

        assert asyncio.run(AllocationLedgerStore(fake_pool).count_in_range(4, 1, 10)) == 2
        assert fake_pool.cursor.executed[0][1] == (4, 1, 10)


class TestRegistryCacheStore:
    def test_build_upsert_query(self):
        query = build_upsert_query("sites", ("external_id", "name"))
        assert query == (
            "INSERT INTO sites (external_id, name, synced_at) VALUES (%s, %s, %s) "
            "ON DUPLICATE KEY UPDATE name = VALUES(name), synced_at = VALUES(synced_at)"
        )

    def test_clear_catalogs_in_fk_order(self, fake_pool):
        asyncio.run(RegistryCacheStore(fake_pool).clear_catalogs())

        assert fake_pool.cursor.queries == [f"DELETE FROM {table}" for table in PRE_CLEAR_ORDER]
        assert fake_pool.conn.commits == 1

    def test_upsert_rows_single_transaction(self, fake_pool):
        rows = [{"external_id": 1, "name": "HQ"}, {"external_id": 2, "name": "DR"}]

        count = asyncio.run(RegistryCacheStore(fake_pool).upsert_rows(SyncEntity.SITES, rows))

        assert count == 2
        (query, params) = fake_pool.cursor.executed[0]
        assert query.startswith("INSERT INTO sites")
        assert [p[:2] for p in params] == [(1, "HQ"), (2, "DR")]
        assert params[0][-1] is not None
        assert fake_pool.conn.begins == 1

    def test_upsert_nothing(self, fake_pool):
        assert asyncio.run(RegistryCacheStore(fake_pool).upsert_rows(SyncEntity.SITES, [])) == 0
        assert fake_pool.cursor.executed == []

    def test_failed_upsert_rolls_back(self, fake_pool):
        fake_pool.cursor.errors = [aiomysql.OperationalError(2013, "Lost connection")]

        with pytest.raises(aiomysql.OperationalError):
            asyncio.run(RegistryCacheStore(fake_pool).upsert_rows(SyncEntity.SITES, [{"external_id": 1}]))

        assert fake_pool.conn.rollbacks == 1
        assert fake_pool.conn.commits == 0

    def test_replace_addresses_in_range(self, fake_pool):
        rows = [{"external_id": 31, "address": "10.0.0.2"}]

        asyncio.run(RegistryCacheStore(fake_pool).replace_rows(
            SyncEntity.IP_ADDRESSES, rows, address_range=(4, 100, 200)
        ))

        delete, insert = fake_pool.cursor.executed
        assert delete == (
            "DELETE FROM cached_addresses WHERE family = %s AND address_int BETWEEN %s AND %s", (4, 100, 200)
        )
        assert insert[0].startswith("INSERT INTO cached_addresses")

    def test_replace_with_no_rows_only_deletes(self, fake_pool):
        assert asyncio.run(RegistryCacheStore(fake_pool).replace_rows(SyncEntity.DEVICES, [])) == 0
        assert fake_pool.cursor.queries == ["DELETE FROM cached_devices"]

    def test_sync_status_keeps_last_success_on_failure(self, fake_pool):
        store = RegistryCacheStore(fake_pool)

        asyncio.run(store.set_sync_status(SyncEntity.SITES, SyncState.SUCCESS, "Synced 1 sites", 1))
        asyncio.run(store.set_sync_status(SyncEntity.SITES, SyncState.FAILED, "boom"))

        (query, success_params), (_, failed_params) = fake_pool.cursor.executed
        assert "COALESCE(VALUES(last_success_at), last_success_at)" in query
        assert success_params[-1] is not None
        assert failed_params[-1] is None

    def test_get_prefix_converts_row(self, fake_pool):
        fake_pool.cursor.fetchone_results = [{
            "external_id": 7, "prefix": "10.0.0.0/24", "family": 4,
            "network_int": Decimal(167772160), "broadcast_int": Decimal(167772415),
            "site_id": 1, "site_name": "HQ", "vlan_id": None, "status": "active", "role_name": None,
            "is_pool": 1, "description": None, "synced_at": datetime(2026, 1, 5, 12, 0),
        }]

        prefix = asyncio.run(RegistryCacheStore(fake_pool).get_prefix(7))

        assert prefix["is_pool"] is True
        assert prefix["network_int"] == 167772160
        assert isinstance(prefix["network_int"], int)
        assert prefix["synced_at"].tzinfo is not None

    def test_list_prefixes_filters(self, fake_pool):
        asyncio.run(RegistryCacheStore(fake_pool).list_prefixes(site_id=3, pools_only=True))

        (query, params) = fake_pool.cursor.executed[0]
        assert "WHERE site_id = %s AND is_pool = TRUE" in query
        assert params == (3,)

    def test_last_successful_sync_never_synced(self, fake_pool):
        assert asyncio.run(RegistryCacheStore(fake_pool).last_successful_sync(SyncEntity.IP_ADDRESSES)) is None


class TestDeploymentMappingStore:
    def test_deployment_mapping_upsert(self, fake_pool):
        asyncio.run(DeploymentMappingStore(fake_pool).upsert_deployment_mapping(
            "d1", "SW-MAIN-01", {"name": "SW-MAIN-01", "template_id": 3}, 42
        ))

        (query, params) = fake_pool.cursor.executed[0]
        assert "ON DUPLICATE KEY UPDATE" in query
        assert params[:2] == ("d1", "SW-MAIN-01")
        assert '"template_id": 3' in params[2]
        assert params[3] == 42

    def test_cell_mapping(self, fake_pool):
        asyncio.run(DeploymentMappingStore(fake_pool).upsert_device_diagram_mapping(
            42, "d1", {"cell_id": "c1", "x": 10.0, "y": 20.0, "width": 80.0, "height": 40.0, "style": "shape=image"}
        ))

        params = fake_pool.cursor.executed[0][1]
        assert params[:8] == (42, "d1", "c1", 10.0, 20.0, 80.0, 40.0, "shape=image")

    @pytest.mark.parametrize("status,stamped", [
        (DeploymentStatus.DEPLOYED, True),
        (DeploymentStatus.DRAFT, False),
    ])
    def test_diagram_status(self, fake_pool, status, stamped):
        asyncio.run(DeploymentMappingStore(fake_pool).update_diagram_status("d1", status))

        params = fake_pool.cursor.executed[0][1]
        assert params[1] == status
        assert (params[2] is not None) == stamped


class TestMigrations:
    def test_fresh_database_applies_everything(self, fake_pool):
        fake_pool.cursor.fetchall_results = [[]]

        applied = asyncio.run(run_migrations(fake_pool))

        assert applied == [version for version, _, _ in MIGRATIONS]
        assert fake_pool.conn.commits == len(MIGRATIONS)
        inserts = [params for query, params in fake_pool.cursor.executed
                   if query.startswith("INSERT INTO schema_migrations")]
        assert [p[0] for p in inserts] == applied

    def test_up_to_date(self, fake_pool):
        fake_pool.cursor.fetchall_results = [[{"version": v} for v, _, _ in MIGRATIONS]]

        assert asyncio.run(run_migrations(fake_pool)) == []
        assert len(fake_pool.cursor.executed) == 2

    def test_failed_migration_rolls_back(self, fake_pool):
        fake_pool.cursor.fetchall_results = [[]]
        fake_pool.cursor.errors = [None, None, aiomysql.OperationalError(1050, "Table 'sites' already exists")]

        with pytest.raises(aiomysql.OperationalError):
            asyncio.run(run_migrations(fake_pool))

        assert fake_pool.conn.rollbacks == 1
        assert fake_pool.conn.commits == 0

    def test_migrations_are_ordered(self):
        versions = [version for version, _, _ in MIGRATIONS]
        assert versions == sorted(versions)
        assert len(set(versions)) == len(versions)


class TestConnectionPool:
    def test_pool_autocommits_so_reads_do_not_hold_transactions(self, monkeypatch):
        pool = Mock()
        pool.wait_closed = AsyncMock()
        create_pool = AsyncMock(return_value=pool)
        monkeypatch.setattr(mysql_connection, "_mysql_pool", None)
        monkeypatch.setattr(mysql_connection.aiomysql, "create_pool", create_pool)

        assert asyncio.run(mysql_connection.get_mysql_pool()) is pool
        assert asyncio.run(mysql_connection.get_mysql_pool()) is pool
        asyncio.run(mysql_connection.close_mysql_pool())

        create_pool.assert_awaited_once()
        assert create_pool.call_args.kwargs["autocommit"] is True
        pool.close.assert_called_once_with()
        assert mysql_connection._mysql_pool is None

    def test_reads_leave_no_open_transaction(self, fake_pool):
        fake_pool.cursor.fetchone_results = [None]

        asyncio.run(AllocationLedgerStore(fake_pool).get("10.0.0.5"))

        assert fake_pool.conn.begins == 0
        assert fake_pool.conn.rollbacks == 0
