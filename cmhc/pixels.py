import logging
from dataclasses import dataclass
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from scipy.stats import spearmanr

logger = logging.getLogger(__name__)

LOW = 'Low'
MEDIUM = 'Medium'
HIGH = 'High'
FLOW_CLASSES = [LOW, MEDIUM, HIGH]

OBSERVATION_COLUMNS = ['date', 'discharge', 'flow_class', 'pixel_id', 'ratio']


def discharge_class(q, q1, q2):
    """High if q >= q2, Medium if q1 <= q < q2, Low otherwise."""
    if q >= q2:
        return HIGH
    if q >= q1:
        return MEDIUM
    return LOW


@dataclass(frozen=True)
class PixelSelection:
    flow_class: str
    pixel_id: int
    row: Optional[int]
    col: Optional[int]
    rho: float
    n_obs: int
    geometry: Optional[object] = None


def build_observations(samples, pixel_ids):
    """Long table of C/M ratios per (date, candidate pixel).

    Parameters
    ----------
    samples : iterable of dict
        One per date with keys date, discharge, flow_class, C (float or
        None) and M (1d array of B08 values aligned with `pixel_ids`, NaN
        where the pixel is masked).
    pixel_ids : array-like of int

    Returns
    -------
    pandas.DataFrame
        Columns date, discharge, flow_class, pixel_id, ratio. Pixels with an
        undefined M are left out; a zero M or undefined C gives a NaN ratio.
    """
    pixel_ids = np.asarray(pixel_ids, dtype=int)
    frames = []
    for s in samples:
        m = np.asarray(s['M'], dtype=float)
        defined = np.isfinite(m)
        c = np.nan if s['C'] is None else float(s['C'])
        with np.errstate(divide='ignore', invalid='ignore'):
            ratio = np.where(m[defined] != 0, c / m[defined], np.nan)
        frames.append(pd.DataFrame({'date': s['date'],
                                    'discharge': s['discharge'],
                                    'flow_class': s['flow_class'],
                                    'pixel_id': pixel_ids[defined],
                                    'ratio': ratio}))
    if not frames:
        return pd.DataFrame(columns=OBSERVATION_COLUMNS)
    return pd.concat(frames, ignore_index=True)[OBSERVATION_COLUMNS]


def pixel_rho(ratio, discharge):
    """Spearman rank correlation of a pixel's ratio series against discharge,
    or NaN if fewer than 2 observations or either series is constant.
    """
    ratio = np.asarray(ratio, dtype=float)
    discharge = np.asarray(discharge, dtype=float)
    if len(ratio) < 2:
        return np.nan
    if np.unique(ratio).size < 2 or np.unique(discharge).size < 2:
        return np.nan
    rho, _ = spearmanr(ratio, discharge)
    return float(rho)


def select_best_pixels(observations, candidates=None):
    """For each discharge class, pick the candidate pixel whose C/M ratio best
    rank-correlates with discharge.

    Classes are handled independently. Pixels with fewer than 2 observations or
    an undefined rho are skipped; ties go to the lowest pixel_id. A class with
    no defined rho maps to None.

    Parameters
    ----------
    observations : pandas.DataFrame
        As returned by `build_observations`.
    candidates : geopandas.GeoDataFrame, optional
        M candidate table indexed by pixel_id with row, col and geometry; used
        to locate the selected pixels.

    Returns
    -------
    dict
        {flow class: PixelSelection or None}
    """
    selections = {}
    obs = observations.dropna(subset=['pixel_id', 'discharge', 'ratio'])
    for flow_class in FLOW_CLASSES:
        subset = obs[obs['flow_class'] == flow_class]
        best = None
        for pixel_id, group in subset.groupby('pixel_id', sort=True):
            rho = pixel_rho(group['ratio'], group['discharge'])
            if np.isnan(rho):
                continue
            if best is None or rho > best[1]:
                best = (int(pixel_id), rho, len(group))

        if best is None:
            logger.warning(f'No pixel with a defined correlation for the {flow_class} class')
            selections[flow_class] = None
            continue

        pixel_id, rho, n_obs = best
        row = col = None
        geometry = None
        if candidates is not None:
            r = candidates.loc[pixel_id]
            row, col, geometry = int(r['row']), int(r['col']), r.geometry
        selections[flow_class] = PixelSelection(flow_class, pixel_id, row, col, rho, n_obs, geometry)
        logger.info(f'{flow_class}: pixel {pixel_id} rho={rho:.3f} ({n_obs} dates)')
    return selections


def selections_to_gdf(selections, station, season):
    """Selected pixels as a point GeoDataFrame (EPSG:4326), one row per class
    with a selection.
    """
    records = [{'station': station,
                'season': season,
                'flow_class': s.flow_class,
                'pixel_id': s.pixel_id,
                'row': s.row,
                'col': s.col,
                'rho': s.rho,
                'n_obs': s.n_obs,
                'geometry': s.geometry}
               for s in selections.values() if s is not None]
    columns = ['station', 'season', 'flow_class', 'pixel_id', 'row', 'col', 'rho', 'n_obs', 'geometry']
    return gpd.GeoDataFrame(pd.DataFrame(records, columns=columns), geometry='geometry', crs='epsg:4326')
