import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from config import DAYS_PER_YEAR, OUTLIER_IQR_FACTOR, STABLECOIN_SYMBOLS
from database.repositories.enriched_repository import EnrichedRepository
from database.repositories.stat_repository import StatRepository
from database.repositories.yield_repository import YieldRepository, HISTORY_COLUMNS
from data_processing.rolling_stats import RollingStats, daily_return_from_apy

logger = logging.getLogger(__name__)

APY_CHANGE_WINDOWS = {'apy_pct_1d': 1, 'apy_pct_7d': 7, 'apy_pct_30d': 30}
# Longest window plus a day to hold the observation the window starts from
LOOKBACK_DAYS = max(APY_CHANGE_WINDOWS.values()) + 1
LATEST_COLUMNS = ['config_id', 'pool', 'timestamp', 'tvl_usd', 'apy']


def split_symbol(symbol: str) -> List[str]:
    return [token.strip().upper() for token in (symbol or '').split('-') if token.strip()]


def classify_pool(symbol: str, stablecoins=STABLECOIN_SYMBOLS) -> Tuple[bool, str, str]:
    """
    Returns (stablecoin, exposure, il_risk) for a pool symbol such as "USDC-WETH".
    """
    tokens = split_symbol(symbol)
    stable_set = {s.upper() for s in stablecoins}
    stablecoin = bool(tokens) and all(token in stable_set for token in tokens)
    exposure = 'single' if len(tokens) <= 1 else 'multi'
    il_risk = 'no' if exposure == 'single' or stablecoin else 'yes'
    return stablecoin, exposure, il_risk


def calculate_apy_changes(history: pd.DataFrame) -> pd.DataFrame:
    """
    For each pool, latest APY minus the APY of the latest observation at or before
    (latest timestamp - window), for the 1, 7 and 30 day windows.
    Returns a DataFrame indexed by config_id; NaN where the history is too short.
    """
    records = {}
    for config_id, pool_df in history.groupby('config_id', sort=False):
        pool_df = pool_df.sort_values('timestamp')
        last = pool_df.iloc[-1]
        changes = {}
        for column, days in APY_CHANGE_WINDOWS.items():
            past = pool_df[pool_df['timestamp'] <= last['timestamp'] - pd.Timedelta(days=days)]
            changes[column] = float(last['apy']) - float(past['apy'].iloc[-1]) if not past.empty else np.nan
        changes['apy'] = float(last['apy'])
        records[config_id] = changes

    return pd.DataFrame.from_dict(records, orient='index', columns=list(APY_CHANGE_WINDOWS) + ['apy'])


def flag_outliers(apy: pd.Series, factor: float = OUTLIER_IQR_FACTOR) -> pd.Series:
    """Flags values outside [Q1 - factor*IQR, Q3 + factor*IQR] of the batch."""
    if apy.empty:
        return pd.Series(dtype=bool)
    q1, q3 = apy.quantile(0.25), apy.quantile(0.75)
    iqr = q3 - q1
    return (apy < q1 - factor * iqr) | (apy > q3 + factor * iqr)


def load_recent_history(yield_repo: YieldRepository, config_ids: List[Any]) -> pd.DataFrame:
    """
    Reads the yield history the change windows need: observations from LOOKBACK_DAYS
    before the newest one onwards. Pools with nothing that recent keep their latest
    observation so they are still enriched.
    """
    latest = pd.DataFrame(yield_repo.get_latest_observations(), columns=LATEST_COLUMNS)
    latest = latest[latest['config_id'].isin(config_ids)].copy()
    if latest.empty:
        return pd.DataFrame(columns=HISTORY_COLUMNS)
    latest['timestamp'] = pd.to_datetime(latest['timestamp'], utc=True)

    start = (latest['timestamp'].max() - pd.Timedelta(days=LOOKBACK_DAYS)).to_pydatetime()
    history = yield_repo.get_history_frame(config_ids, start=start)

    stale = latest[~latest['config_id'].isin(history['config_id'])]
    if not stale.empty:
        logger.info(f"{len(stale):,} pools have no observation since {start.isoformat()}")
        stale = stale.reindex(columns=HISTORY_COLUMNS)
        history = stale if history.empty else pd.concat([history, stale], ignore_index=True)
    return history


def _none_if_nan(value):
    return None if value is None or pd.isna(value) else float(value)


def build_enriched_records(config_stats: List[Tuple[Any, Any]], history: pd.DataFrame,
                           predictions: Optional[Dict[str, Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    """
    Derives enriched rows from (PoolConfig, PoolStat) pairs and the yield history.
    Pools without any observation in the history are skipped.
    """
    predictions = predictions or {}
    changes = calculate_apy_changes(history) if not history.empty else pd.DataFrame()

    pools = pd.DataFrame([
        {'config_id': config.config_id, 'pool': config.pool, 'chain': config.chain,
         'project': config.project, 'symbol': config.symbol}
        for config, _ in config_stats
    ])
    if pools.empty or changes.empty:
        return []

    pools = pools[pools['config_id'].isin(changes.index)].reset_index(drop=True)
    if pools.empty:
        return []
    pools['chain_factorized'] = pd.factorize(pools['chain'], sort=True)[0]
    pools['project_factorized'] = pd.factorize(pools['project'], sort=True)[0]
    latest_apy = changes.loc[pools['config_id'], 'apy'].reset_index(drop=True)
    pools['outlier'] = flag_outliers(latest_apy).values

    stats_by_id = {config.config_id: RollingStats.from_row(stat) for config, stat in config_stats}

    records = []
    for _, row in pools.iterrows():
        stats = stats_by_id[row['config_id']]
        pool_changes = changes.loc[row['config_id']]
        stablecoin, exposure, il_risk = classify_pool(row['symbol'])
        daily_return = daily_return_from_apy(pool_changes['apy'], DAYS_PER_YEAR)

        records.append({
            'enriched_id': row['config_id'],
            'apy_pct_1d': _none_if_nan(pool_changes['apy_pct_1d']),
            'apy_pct_7d': _none_if_nan(pool_changes['apy_pct_7d']),
            'apy_pct_30d': _none_if_nan(pool_changes['apy_pct_30d']),
            'stablecoin': stablecoin,
            'il_risk': il_risk,
            'exposure': exposure,
            'predictions': predictions.get(row['pool'], {}),
            'mu': stats.mu(DAYS_PER_YEAR),
            'sigma': stats.sigma(DAYS_PER_YEAR),
            'count': stats.count,
            'outlier': bool(row['outlier']),
            'daily_return': daily_return if daily_return is not None else 0.0,
            'apy_mean_expanding': stats.mean_apy,
            'apy_std_expanding': stats.apy_std(),
            'chain_factorized': int(row['chain_factorized']),
            'project_factorized': int(row['project_factorized']),
        })
    return records


def enrich_pools(predictions: Optional[Dict[str, Dict[str, Any]]] = None,
                 stat_repo: Optional[StatRepository] = None,
                 yield_repo: Optional[YieldRepository] = None,
                 enriched_repo: Optional[EnrichedRepository] = None) -> int:
    """
    Recomputes the enriched table for every pool with statistics.
    Returns the number of rows written.
    """
    stat_repo = stat_repo or StatRepository()
    yield_repo = yield_repo or YieldRepository(engine=stat_repo.engine)
    enriched_repo = enriched_repo or EnrichedRepository(engine=stat_repo.engine)

    logger.info("Starting pool enrichment...")
    config_stats = stat_repo.get_all_stats()
    if not config_stats:
        logger.warning("No pool statistics found. Skipping enrichment.")
        return 0

    history = load_recent_history(yield_repo, [config.config_id for config, _ in config_stats])
    records = build_enriched_records(config_stats, history, predictions)
    written = enriched_repo.bulk_upsert_enriched(records)

    outliers = sum(1 for r in records if r['outlier'])
    stablecoins = sum(1 for r in records if r['stablecoin'])
    logger.info("\n" + "="*60)
    logger.info("🧪 POOL ENRICHMENT SUMMARY")
    logger.info("="*60)
    logger.info(f"📊 Pools with statistics: {len(config_stats):,}")
    logger.info(f"✅ Enriched rows written: {written:,}")
    logger.info(f"🪙 Stablecoin pools: {stablecoins:,}")
    logger.info(f"⚠️ Outliers flagged: {outliers:,}")
    logger.info("="*60)
    return written


if __name__ == "__main__":
    enrich_pools()
