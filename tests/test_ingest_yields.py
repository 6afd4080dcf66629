import math
import unittest
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch, MagicMock
import numpy as np
from sqlalchemy.dialects import postgresql
import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.db_utils import create_db_engine, init_db
from database.models import PoolStat, EnrichedPool
from database.repositories import ConfigRepository, YieldRepository, StatRepository
from database.repositories.exceptions import (
    ConstraintViolationError,
    DuplicateEntityError,
    InvalidInputError,
    NotFoundError,
)
from data_processing.ingest_yields import YieldObservationInput, ingest_observation, ingest_observations
from data_processing.rolling_stats import daily_return_from_apy

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

AAVE_USDC = {
    'pool': 'aave-usdc',
    'project': 'aave-v3',
    'chain': 'Ethereum',
    'symbol': 'USDC',
    'underlying_tokens': ['0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48'],
    'url': 'https://defillama.com/yields/pool/aave-usdc',
}


class TestIngestYields(unittest.TestCase):
    """Test suite for transactional yield ingestion against an in-memory database."""

    def setUp(self):
        self.engine = create_db_engine("sqlite://")
        init_db(self.engine)
        self.config_repo = ConfigRepository(engine=self.engine)
        self.yield_repo = YieldRepository(engine=self.engine)
        self.stat_repo = StatRepository(engine=self.engine)
        self.config = self.config_repo.insert_config(AAVE_USDC)

    def tearDown(self):
        self.engine.dispose()

    def ingest(self, apy, timestamp, pool='aave-usdc', tvl_usd=1_000_000, **kwargs):
        observation = YieldObservationInput(pool=pool, timestamp=timestamp, tvl_usd=tvl_usd, apy=apy, **kwargs)
        return ingest_observation(observation, self.yield_repo, self.stat_repo)

    def test_aave_usdc_scenario(self):
        """Three hourly observations give count 3, mean 2.0 and the compounded product."""
        apys = [2.0, 2.2, 1.8]
        for i, apy in enumerate(apys):
            stats = self.ingest(apy, T0 + timedelta(hours=i))

        expected_product = np.prod([1 + daily_return_from_apy(a) for a in apys])
        self.assertEqual(stats.count, 3)
        self.assertAlmostEqual(stats.mean_apy, 2.0, places=12)
        self.assertTrue(math.isclose(stats.apy_variance(), np.var(apys, ddof=1), rel_tol=1e-9))
        self.assertTrue(math.isclose(stats.product_dr, expected_product, rel_tol=1e-12))

        stored = self.stat_repo.get_stat_by_pool('aave-usdc')
        self.assertEqual(stored.stat_id, self.config.config_id)
        self.assertEqual(stored.count, 3)
        self.assertAlmostEqual(stored.mean_apy, 2.0, places=12)
        self.assertTrue(math.isclose(stored.product_dr, expected_product, rel_tol=1e-12))
        self.assertEqual(stored.count_dr, 3)

    def test_history_is_appended_in_order(self):
        for i, apy in enumerate([2.0, 2.2, 1.8]):
            self.ingest(apy, T0 + timedelta(hours=i), apy_base=apy - 0.5, apy_reward=0.5)

        history = self.yield_repo.get_history(self.config.config_id)
        self.assertEqual([h.apy for h in history], [2.0, 2.2, 1.8])
        self.assertEqual([h.timestamp for h in history], [T0, T0 + timedelta(hours=1), T0 + timedelta(hours=2)])
        self.assertEqual(history[0].apy_reward, 0.5)
        self.assertEqual(history[0].tvl_usd, 1_000_000)

        window = self.yield_repo.get_history(self.config.config_id, start=T0 + timedelta(hours=1))
        self.assertEqual(len(window), 2)

        df = self.yield_repo.get_history_frame()
        self.assertEqual(list(df['apy']), [2.0, 2.2, 1.8])
        self.assertEqual(set(df['pool']), {'aave-usdc'})

    def test_out_of_order_is_rejected_and_stats_unchanged(self):
        self.ingest(2.0, T0 + timedelta(hours=1))
        before = self.stat_repo.get_stat(self.config.config_id)

        with self.assertRaises(InvalidInputError):
            self.ingest(5.0, T0)

        after = self.stat_repo.get_stat(self.config.config_id)
        self.assertEqual(after.count, before.count)
        self.assertEqual(after.mean_apy, before.mean_apy)
        self.assertEqual(after.product_dr, before.product_dr)
        self.assertEqual(self.yield_repo.count_observations(self.config.config_id), 1)

    def test_equal_timestamp_is_rejected(self):
        self.ingest(2.0, T0)
        with self.assertRaises(InvalidInputError):
            self.ingest(2.0, T0)
        self.assertEqual(self.yield_repo.count_observations(self.config.config_id), 1)

    def test_timezones_are_compared_in_utc(self):
        self.ingest(2.0, T0)
        # 13:30 at UTC+2 is 11:30 UTC, before T0
        earlier = datetime(2024, 3, 1, 13, 30, tzinfo=timezone(timedelta(hours=2)))
        with self.assertRaises(InvalidInputError):
            self.ingest(2.0, earlier)

        later = datetime(2024, 3, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(self.ingest(2.0, later).count, 2)
        self.assertEqual(self.yield_repo.get_latest_timestamp(self.config.config_id),
                         datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc))

    def test_count_increments_once_per_accepted_observation(self):
        """Re-feeding identical values at later timestamps is not deduplicated."""
        for i in range(4):
            stats = self.ingest(3.0, T0 + timedelta(hours=i))
            self.assertEqual(stats.count, i + 1)
        self.assertEqual(self.yield_repo.count_observations(self.config.config_id), 4)

    def test_unknown_pool_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.ingest(2.0, T0, pool='unknown-pool')
        self.assertTrue(self.yield_repo.get_history_frame().empty)

    def test_invalid_values_are_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.ingest(2.0, T0, tvl_usd=-1)
        with self.assertRaises(InvalidInputError):
            self.ingest(float('nan'), T0)
        with self.assertRaises(InvalidInputError):
            self.ingest(float('inf'), T0)
        with self.assertRaises(InvalidInputError):
            self.ingest(None, T0)
        with self.assertRaises(InvalidInputError):
            self.ingest(2.0, T0, apy_base=float('nan'))
        with self.assertRaises(InvalidInputError):
            self.ingest(2.0, "2024-03-01T12:00:00Z")

        self.assertIsNone(self.stat_repo.get_stat_by_pool('aave-usdc'))
        self.assertEqual(self.yield_repo.count_observations(self.config.config_id), 0)

    def test_failed_stat_write_rolls_back_observation(self):
        """No partial update: the yield row is rolled back with the stat write."""
        with patch.object(self.stat_repo, 'save_stat', side_effect=RuntimeError("disk full")):
            with self.assertRaises(RuntimeError):
                self.ingest(2.0, T0)

        self.assertEqual(self.yield_repo.count_observations(self.config.config_id), 0)
        self.assertIsNone(self.stat_repo.get_stat(self.config.config_id))

    def test_tvl_is_stored_as_integer(self):
        self.ingest(2.0, T0, tvl_usd=1234.6)
        history = self.yield_repo.get_history(self.config.config_id)
        self.assertEqual(history[0].tvl_usd, 1235)

    def test_tvl_above_bigint_range_is_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.ingest(2.0, T0, tvl_usd=1e20)
        self.assertEqual(self.yield_repo.count_observations(self.config.config_id), 0)

        self.assertEqual(self.ingest(2.0, T0, tvl_usd=2 ** 62).count, 1)
    def test_ingest_observations_batch(self):
        observations = [
            YieldObservationInput(pool='aave-usdc', timestamp=T0 + timedelta(hours=i), tvl_usd=10, apy=apy)
            for i, apy in enumerate([1.0, 2.0, 3.0])
        ]
        results = ingest_observations(observations, self.yield_repo, self.stat_repo)
        self.assertEqual([r.count for r in results], [1, 2, 3])
        self.assertAlmostEqual(results[-1].mean_apy, 2.0, places=12)

    def test_pools_are_tracked_independently(self):
        self.config_repo.insert_config(dict(AAVE_USDC, pool='compound-usdc', project='compound-v3'))
        self.ingest(2.0, T0 + timedelta(hours=1))
        # An earlier timestamp is fine for a different pool
        stats = self.ingest(4.0, T0, pool='compound-usdc')

        self.assertEqual(stats.count, 1)
        self.assertEqual(stats.mean_apy, 4.0)
        self.assertEqual(self.stat_repo.get_stat_by_pool('aave-usdc').mean_apy, 2.0)
        self.assertEqual(len(self.stat_repo.get_all_stats()), 2)


class TestConfigRepository(unittest.TestCase):
    """Test suite for pool config persistence and constraint handling."""

    def setUp(self):
        self.engine = create_db_engine("sqlite://")
        init_db(self.engine)
        self.config_repo = ConfigRepository(engine=self.engine)
        self.yield_repo = YieldRepository(engine=self.engine)

    def tearDown(self):
        self.engine.dispose()

    def test_duplicate_pool_raises_constraint_violation(self):
        self.config_repo.insert_config(AAVE_USDC)
        with self.assertRaises(ConstraintViolationError):
            self.config_repo.insert_config(dict(AAVE_USDC, project='other'))
        with self.assertRaises(DuplicateEntityError):
            self.config_repo.insert_config(AAVE_USDC)
        self.assertEqual(len(self.config_repo.get_all_configs()), 1)

    def test_missing_required_field_raises_constraint_violation(self):
        with self.assertRaises(ConstraintViolationError):
            self.config_repo.insert_config(dict(AAVE_USDC, url=None))

    def test_observation_for_missing_config_violates_foreign_key(self):
        with self.assertRaises(ConstraintViolationError):
            with self.yield_repo.session() as session:
                self.yield_repo.add_observation(session, uuid.uuid4(), T0, 1, 1.0)

    def test_upsert_keeps_config_id(self):
        created = self.config_repo.upsert_config(AAVE_USDC)
        updated = self.config_repo.upsert_config(dict(AAVE_USDC, symbol='USDC.E', reward_tokens=['0xaave']))

        self.assertEqual(created.config_id, updated.config_id)
        stored = self.config_repo.get_config_by_pool('aave-usdc')
        self.assertEqual(stored.symbol, 'USDC.E')
        self.assertEqual(stored.reward_tokens, ['0xaave'])
        self.assertEqual(stored.underlying_tokens, AAVE_USDC['underlying_tokens'])
        self.assertIsNotNone(stored.updated_at)

    def test_bulk_upsert_configs(self):
        self.config_repo.insert_config(AAVE_USDC)
        configs = self.config_repo.bulk_upsert_configs([
            dict(AAVE_USDC, chain='Arbitrum'),
            dict(AAVE_USDC, pool='curve-3pool', project='curve-dex', symbol='DAI-USDC-USDT'),
        ])

        id_map = self.config_repo.get_config_id_map()
        self.assertEqual(set(id_map), {'aave-usdc', 'curve-3pool'})
        self.assertEqual(id_map['curve-3pool'], configs['curve-3pool'].config_id)
        self.assertEqual(self.config_repo.get_config_by_pool('aave-usdc').chain, 'Arbitrum')


class TestPerPoolSerialization(unittest.TestCase):
    """Ingestion locks the pool's rows so concurrent writers for one pool queue up."""

    def compiled(self, session):
        stmt = session.execute.call_args[0][0]
        return str(stmt.compile(dialect=postgresql.dialect()))

    def test_lock_config_selects_for_update(self):
        session = MagicMock()
        YieldRepository(engine=MagicMock()).lock_config(session, 'aave-usdc')
        sql = self.compiled(session)
        self.assertIn('FROM config', sql)
        self.assertTrue(sql.rstrip().endswith('FOR UPDATE'))

    def test_get_stat_for_update_selects_for_update(self):
        session = MagicMock()
        StatRepository(engine=MagicMock()).get_stat_for_update(session, uuid.uuid4())
        sql = self.compiled(session)
        self.assertIn('FROM stat', sql)
        self.assertTrue(sql.rstrip().endswith('FOR UPDATE'))


class TestCounterColumns(unittest.TestCase):
    """Observation counters must hold years of hourly data on Postgres."""

    def compiled_type(self, column):
        return str(column.type.compile(dialect=postgresql.dialect()))

    def test_counts_are_integer(self):
        self.assertEqual(self.compiled_type(PoolStat.__mapper__.columns['count']), 'INTEGER')
        self.assertEqual(self.compiled_type(PoolStat.__mapper__.columns['count_dr']), 'INTEGER')
        self.assertEqual(self.compiled_type(EnrichedPool.__mapper__.columns['count']), 'INTEGER')

    def test_count_past_smallint_range(self):
        engine = create_db_engine("sqlite://")
        init_db(engine)
        config = ConfigRepository(engine=engine).insert_config(AAVE_USDC)
        stat_repo = StatRepository(engine=engine)
        with stat_repo.session() as session:
            stat_repo.save_stat(session, config.config_id, {
                'count': 40000, 'mean_apy': 2.0, 'mean2_apy': 0.0, 'mean_dr': 0.0,
                'mean2_dr': 0.0, 'product_dr': 1.0, 'count_dr': 40000,
            })

        observation = YieldObservationInput(pool='aave-usdc', timestamp=T0, tvl_usd=1, apy=2.0)
        stats = ingest_observation(observation, YieldRepository(engine=engine), stat_repo)

        self.assertEqual(stats.count, 40001)
        self.assertEqual(stat_repo.get_stat(config.config_id).count, 40001)
        engine.dispose()


if __name__ == '__main__':
    unittest.main()
