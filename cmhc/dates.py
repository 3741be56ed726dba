import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from cmhc.defaults import DRY, RAINY

logger = logging.getLogger(__name__)

# Scene Classification Layer: cloud shadow, medium / high cloud probability, thin cirrus.
BAD_SCL_CLASSES = (3, 8, 9, 10)


def bad_pixel_mask(scene, cloud_prob_thr=20, cloud_prob_asset=None,
                   bad_scl_classes=BAD_SCL_CLASSES):
    """Pixels flagged as cloud, cirrus or cloud shadow. A layer missing from
    the scene flags nothing.
    """
    bad = np.zeros(scene.shape, dtype=bool)
    if cloud_prob_asset:
        prob = scene.band(cloud_prob_asset)
        if prob is not None:
            prob = np.where(np.isfinite(prob), prob, 0)
            bad |= prob > cloud_prob_thr
    scl = scene.band('SCL')
    if scl is not None:
        bad |= np.isin(scl, bad_scl_classes)
    return bad


@dataclass(frozen=True)
class DateQuality:
    date: str
    station: str
    bad_pct: float
    valid_pct: float

    def is_accepted(self, final_cloud_thr, valid_pixel_thr):
        return (self.bad_pct < final_cloud_thr) and (self.valid_pct > valid_pixel_thr)


def date_quality(scene, roi, station=None, cloud_prob_thr=20, cloud_prob_asset=None,
                 reference_band='B04', bad_scl_classes=BAD_SCL_CLASSES):
    """Percent of ROI pixels that are bad and that hold reference band data.

    Parameters
    ----------
    scene : cmhc.imagery.DailyScene
    roi : numpy.ndarray
        Boolean ROI mask on the scene grid.

    Returns
    -------
    DateQuality
    """
    n_roi = int(roi.sum())
    if n_roi == 0:
        raise ValueError(f'Region of interest of {station} covers no pixels')
    bad = bad_pixel_mask(scene, cloud_prob_thr, cloud_prob_asset, bad_scl_classes)
    ref = scene.band(reference_band)
    valid = np.zeros(scene.shape, dtype=bool) if ref is None else np.isfinite(ref)
    bad_pct = 100 * np.sum(bad & roi) / n_roi
    valid_pct = 100 * np.sum(valid & roi) / n_roi
    return DateQuality(scene.date, station, float(bad_pct), float(valid_pct))


def filter_dates(qualities, final_cloud_thr=10, valid_pixel_thr=95):
    return [q for q in qualities if q.is_accepted(final_cloud_thr, valid_pixel_thr)]


class DateSelector:
    """Cloud-free date selection for one station.

    Scans every per-day mosaic the scene source offers over the station
    ROI, keeps those with bad % < final_cloud_thr and valid % >
    valid_pixel_thr and labels them by season.
    """

    def __init__(self, station, source, calendar, config):
        self.station = station
        self.source = source
        self.calendar = calendar
        self.config = config
        self.qualities = []

    def assess_dates(self):
        roi = self.source.get_roi_mask()
        self.qualities = []
        for d in self.source.list_dates():
            q = date_quality(self.source.get_scene(d), roi,
                             station=self.station.name,
                             cloud_prob_thr=self.config.cloud_prob_thr,
                             cloud_prob_asset=self.config.cloud_prob_asset,
                             reference_band=self.config.reference_band,
                             bad_scl_classes=self.config.bad_scl_classes)
            logger.debug(f'{self.station.name} {q.date}: bad={q.bad_pct:.2f}% valid={q.valid_pct:.2f}%')
            self.qualities.append(q)
        return self.qualities

    def run(self):
        '''
        returns a DataFrame with columns date, season, STATION of the
        accepted dates, sorted by date
        '''
        if not self.qualities:
            self.assess_dates()
        accepted = filter_dates(self.qualities, self.config.final_cloud_thr,
                                self.config.valid_pixel_thr)
        dates = [q.date for q in accepted]
        df = pd.DataFrame({'date': dates,
                           'season': self.calendar.label_dates(dates, station=self.station.name),
                           'STATION': self.station.name},
                          columns=['date', 'season', 'STATION'])
        df = df.sort_values(by='date').reset_index(drop=True)
        self.log_summary(df)
        return df

    def log_summary(self, df):
        n_rainy = int((df['season'] == RAINY).sum())
        n_dry = int((df['season'] == DRY).sum())
        logger.info(f'{self.station.name}: {len(df)} of {len(self.qualities)} dates accepted '
                    f'({n_rainy} {RAINY}, {n_dry} {DRY})')

    def out_name(self):
        y0 = self.config.start_date[:4]
        y1 = self.config.end_date[:4]
        return f'clean_dates_{self.station.name.upper()}_{y0}_{y1}.csv'
