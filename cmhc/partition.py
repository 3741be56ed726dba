import logging

import numpy as np
import pandas as pd

from cmhc.defaults import COMBINED, SEASON_MODES
from cmhc.stations import join_discharge
from cmhc.utils import format_date

logger = logging.getLogger(__name__)


def period_tag(period):
    """'2019_2021' style tag of a (start, end) period."""
    return f'{str(period[0])[:4]}_{str(period[1])[:4]}'


def in_period(dates, period):
    d = pd.to_datetime(pd.Series(dates))
    return ((d >= pd.Timestamp(period[0])) & (d <= pd.Timestamp(period[1]))).to_numpy()


def partition_dates(df, train_period, test_period):
    """Splits a clean dates table into training and testing rows by
    inclusive date ranges. Dates outside both periods are dropped.
    """
    train = df[in_period(df['date'], train_period)].reset_index(drop=True)
    test = df[in_period(df['date'], test_period)].reset_index(drop=True)
    n_out = len(df) - len(train) - len(test)
    if n_out > 0:
        logger.info(f'{n_out} dates fall outside the training and testing periods')
    return train, test


def jenks_class_starts(values, n_classes=3):
    """Fisher-Jenks natural breaks by dynamic programming.

    Parameters
    ----------
    values : array-like
        Observations; NaNs are ignored.
    n_classes : int

    Returns
    -------
    list of float
        Smallest value of each class, in increasing order. The first entry is
        the overall minimum, the rest are the lower bounds used as q1, q2...
    """
    x = np.sort(np.asarray(values, dtype=float))
    x = x[np.isfinite(x)]
    n = len(x)
    if n < n_classes:
        raise ValueError(f'Need at least {n_classes} values for {n_classes} classes, got {n}')

    cs = np.concatenate([[0.0], np.cumsum(x)])
    cs2 = np.concatenate([[0.0], np.cumsum(x * x)])

    cost = np.full((n_classes + 1, n + 1), np.inf)
    split = np.zeros((n_classes + 1, n + 1), dtype=int)
    cost[0, 0] = 0.0
    for k in range(1, n_classes + 1):
        for j in range(k, n + 1):
            i = np.arange(k - 1, j)
            s = cs[j] - cs[i]
            ssd = (cs2[j] - cs2[i]) - s * s / (j - i)
            total = cost[k - 1, i] + ssd
            best = int(np.argmin(total))
            cost[k, j] = total[best]
            split[k, j] = i[best]

    starts = []
    j = n
    for k in range(n_classes, 0, -1):
        i = split[k, j]
        starts.append(i)
        j = i
    return [float(x[i]) for i in reversed(starts)]


def discharge_thresholds(discharge, n_classes=3):
    """(q1, q2) lower bounds of the Medium and High discharge classes."""
    starts = jenks_class_starts(discharge, n_classes)
    return starts[1], starts[2]


def compute_thresholds(train_df, lookup, station, seasonal=False):
    """Discharge class thresholds from the training dates' discharge.

    Parameters
    ----------
    train_df : pandas.DataFrame
        Training dates with date and season columns.
    lookup : dict
        {YYYY-MM-DD: discharge}
    station : str
    seasonal : bool
        One row per season label if True, a single combined row otherwise.

    Returns
    -------
    pandas.DataFrame
        Columns station, season, q1, q2, n_obs.
    """
    joined = dict(join_discharge(train_df['date'], lookup))
    keys = train_df['date'].map(format_date)
    df = train_df.assign(discharge=keys.map(joined)).dropna(subset=['discharge'])

    rows = []
    for season in SEASON_MODES['seasonal' if seasonal else 'combined']:
        subset = df if season == COMBINED else df[df['season'] == season]
        q1, q2 = discharge_thresholds(subset['discharge'])
        logger.info(f'{station} {season}: q1={q1:.3f} q2={q2:.3f} ({len(subset)} dates)')
        rows.append({'station': station, 'season': season, 'q1': q1, 'q2': q2, 'n_obs': len(subset)})
    return pd.DataFrame(rows, columns=['station', 'season', 'q1', 'q2', 'n_obs'])
