import logging
import os
from dataclasses import dataclass

import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import rasterio as rio
from pyproj import Transformer
from rasterio.transform import xy
from scipy.ndimage import maximum_filter

logger = logging.getLogger(__name__)


def awei_sh(scene):
    """Automated Water Extraction Index (shadow variant):
    B02 + 2.5 B03 - 1.5 (B08 + B11) - 0.25 B12
    """
    b = scene.band
    return b('B02') + 2.5 * b('B03') - 1.5 * (b('B08') + b('B11')) - 0.25 * b('B12')


def water_map(scene):
    """1.0 where AWEIsh > 0, 0.0 where it is not, NaN where undefined."""
    a = awei_sh(scene)
    return np.where(np.isfinite(a), (a > 0).astype(float), np.nan)


def nan_stats(arrays):
    """Per-pixel count, mean and population std over a list of 2d arrays,
    ignoring NaNs. Mean and std are NaN where no array has data.
    """
    stack = np.stack(arrays)
    valid = np.isfinite(stack)
    count = valid.sum(axis=0)
    filled = np.where(valid, stack, 0.0)
    with np.errstate(divide='ignore', invalid='ignore'):
        mean = filled.sum(axis=0) / count
        sq = np.where(valid, (stack - mean) ** 2, 0.0)
        std = np.sqrt(sq.sum(axis=0) / count)
    mean[count == 0] = np.nan
    std[count == 0] = np.nan
    return count, mean, std


def water_frequency(scenes):
    _, freq, _ = nan_stats([water_map(s) for s in scenes])
    return freq


def permanent_water_mask(freq, threshold=0.30):
    return np.nan_to_num(freq, nan=-1.0) >= threshold


def disk_footprint(radius):
    y, x = np.ogrid[-radius:radius + 1, -radius:radius + 1]
    return (x * x + y * y) <= radius * radius


def dilate(mask, radius):
    if radius <= 0:
        return mask.copy()
    return maximum_filter(mask.astype(np.uint8), footprint=disk_footprint(radius),
                          mode='constant', cval=0).astype(bool)


def percentile_threshold(values, region, percentile=5, floor=1e-5):
    """max(P<percentile> of values over region, floor), or None if no value is
    defined in the region.
    """
    v = values[region & np.isfinite(values)]
    if v.size == 0:
        return None
    return max(float(np.percentile(v, percentile)), floor)


@dataclass
class CandidateMasks:
    """Boolean rasters on the scene grid, all restricted to the ROI."""
    roi: np.ndarray
    water: np.ndarray
    c: np.ndarray
    w: np.ndarray
    m: np.ndarray
    transform: object = None
    crs: object = None
    thr_c: float = None
    thr_w: float = None

    def summary(self):
        return {'roi': int(self.roi.sum()), 'water': int(self.water.sum()),
                'C': int(self.c.sum()), 'W': int(self.w.sum()), 'M': int(self.m.sum())}


def build_candidate_masks(water, stat_scenes, roi, band='B08', m_buffer_pix=3,
                          percentile=5, floor=1e-5, transform=None, crs=None):
    """Calibration (C), water (W) and measurement (M) candidate masks.

    Parameters
    ----------
    water : numpy.ndarray
        Permanent water mask.
    stat_scenes : list of DailyScene
        Scenes the band mean and std are computed over.
    roi : numpy.ndarray
        Boolean ROI mask.
    band : str
    m_buffer_pix : int
        Disk radius (pixels) the water mask is dilated by to give M.
    percentile, floor : float
        C and W keep pixels at or below max(P<percentile>, floor) of their
        statistic over the ROI.

    Returns
    -------
    CandidateMasks
    """
    water = water & roi
    m = dilate(water, m_buffer_pix) & roi

    if stat_scenes:
        _, mean, std = nan_stats([s.band(band) for s in stat_scenes])
    else:
        mean = std = np.full(roi.shape, np.nan)

    with np.errstate(divide='ignore', invalid='ignore'):
        val_w = np.where(water, mean * std, np.nan)
        cv = np.where(~water & (mean != 0), std / mean, np.nan)

    thr_w = percentile_threshold(val_w, roi, percentile, floor)
    thr_c = percentile_threshold(cv, roi, percentile, floor)
    if thr_w is None:
        logger.warning('No water pixel with defined statistics, W candidate set is empty')
        w = np.zeros(roi.shape, dtype=bool)
    else:
        w = (np.nan_to_num(val_w, nan=np.inf) <= thr_w) & roi
    if thr_c is None:
        logger.warning('No land pixel with defined statistics, C candidate set is empty')
        c = np.zeros(roi.shape, dtype=bool)
    else:
        c = (np.nan_to_num(cv, nan=np.inf) <= thr_c) & roi

    masks = CandidateMasks(roi, water, c, w, m, transform, crs, thr_c, thr_w)
    logger.info(f'Candidate pixels: {masks.summary()}')
    return masks


def sample_candidates(m, transform, crs):
    """M candidate table with pixel ids 0..n-1 in row-major order.

    Returns
    -------
    geopandas.GeoDataFrame
        Indexed by pixel_id with row, col and the pixel centre as an
        EPSG:4326 point.
    """
    rows, cols = np.nonzero(m)
    if len(rows):
        xs, ys = xy(transform, rows, cols)
        lon, lat = Transformer.from_crs(crs, 'epsg:4326', always_xy=True).transform(xs, ys)
    else:
        lon, lat = [], []
    df = pd.DataFrame({'pixel_id': np.arange(len(rows)), 'row': rows, 'col': cols})
    gdf = gpd.GeoDataFrame(df, geometry=gpd.points_from_xy(lon, lat), crs='epsg:4326')
    return gdf.set_index('pixel_id', drop=False)


def write_mask_tif(mask, transform, crs, out_name):
    out_dir = os.path.dirname(out_name)
    if out_dir and not os.path.exists(out_dir):
        os.makedirs(out_dir)
    img_meta = {"driver": "GTiff",
                "height": mask.shape[0],
                "width": mask.shape[1],
                "count": 1,
                "crs": crs,
                "dtype": "uint8",
                "nodata": 0,
                'transform': transform}
    with rio.open(out_name, 'w', **img_meta) as dest:
        dest.write(mask.astype(np.uint8), 1)


def plot_masks(masks, title=None):
    f, ax = plt.subplots(1, 4, figsize=(20, 5))
    layers = [(masks.water, 'Blues', 'Permanent Water'),
              (masks.m, 'Purples', 'M Candidates'),
              (masks.w, 'GnBu', 'W Candidates'),
              (masks.c, 'Oranges', 'C Candidates')]
    for a, (layer, cmap, name) in zip(ax, layers):
        a.imshow(np.where(masks.roi, layer, np.nan), cmap=cmap)
        a.set_title(name)
        a.axis('off')
    if title:
        f.suptitle(title)
    return f
