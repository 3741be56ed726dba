import logging
import os
from collections import namedtuple

import geopandas as gpd
import pandas as pd
from shapely.geometry import mapping

from cmhc.defaults import (COMBINED, DRY, RAINY, RAINY_SEASON_DB, STATIONS,
                           THRESHOLDS_DB)
from cmhc.imagery import utm_epsg
from cmhc.pixels import discharge_class
from cmhc.utils import format_date

logger = logging.getLogger(__name__)

SeasonInterval = namedtuple('SeasonInterval', ['zom', 'station', 'start', 'end'])


def _as_date(d):
    return pd.Timestamp(d).date()


class SeasonCalendar:
    """Rainy season intervals per station / seasonal zone (ZOM). Any date not
    covered by an interval is dry. Interval boundaries are inclusive.
    """

    def __init__(self, intervals):
        self.intervals = [SeasonInterval(i.zom, i.station, _as_date(i.start), _as_date(i.end))
                          for i in intervals]

    @classmethod
    def from_records(cls, records=None):
        records = RAINY_SEASON_DB if records is None else records
        return cls([SeasonInterval(r.get('zom'), r.get('station'), r['start'], r['end'])
                    for r in records])

    @classmethod
    def from_csv(cls, path, storage_options=None):
        df = pd.read_csv(path, storage_options=storage_options)
        missing = {'start', 'end'} - set(df.columns)
        if missing:
            raise ValueError(f'Season calendar {path} lacks columns {sorted(missing)}')
        df = df.astype(object).where(df.notna(), None)
        return cls.from_records(df.to_dict('records'))

    def intervals_for(self, zom=None, station=None, start=None, end=None):
        """Intervals matching the zone and/or station, optionally only those
        overlapping [start, end].
        """
        out = []
        for i in self.intervals:
            if zom is not None and i.zom != zom:
                continue
            if station is not None and i.station != station:
                continue
            if start is not None and i.end < _as_date(start):
                continue
            if end is not None and i.start > _as_date(end):
                continue
            out.append(i)
        return out

    def label(self, date, zom=None, station=None):
        d = _as_date(date)
        for i in self.intervals_for(zom=zom, station=station):
            if i.start <= d <= i.end:
                return RAINY
        return DRY

    def label_dates(self, dates, zom=None, station=None, start=None, end=None):
        intervals = self.intervals_for(zom=zom, station=station, start=start, end=end)
        labels = []
        for date in dates:
            d = _as_date(date)
            labels.append(RAINY if any(i.start <= d <= i.end for i in intervals) else DRY)
        return labels


def read_discharge(path, storage_options=None):
    """Reads a discharge table (columns 'date' and 'debit' or 'discharge')
    into an ordered {YYYY-MM-DD: discharge} mapping.

    Values stored as strings are parsed, negative values are clipped to 0 and
    rows that cannot be parsed are dropped. When a date appears twice the
    last record wins.
    """
    df = pd.read_csv(path, storage_options=storage_options)
    if 'date' not in df.columns:
        raise ValueError(f'Discharge table {path} has no date column')
    if 'debit' in df.columns:
        col = 'debit'
    elif 'discharge' in df.columns:
        col = 'discharge'
    else:
        raise ValueError(f'Discharge table {path} has no debit/discharge column')

    df = df.dropna(subset=['date', col])
    q = pd.to_numeric(df[col].astype(str).str.strip(), errors='coerce')
    n_bad = int(q.isna().sum())
    if n_bad:
        logger.warning(f'{n_bad} unparseable discharge values dropped from {path}')
    df = pd.DataFrame({'date': pd.to_datetime(df['date']).dt.strftime('%Y-%m-%d'),
                       'discharge': q.clip(lower=0)})
    df = df.dropna().drop_duplicates(subset='date', keep='last').sort_values(by='date')
    return dict(zip(df['date'], df['discharge'].astype(float)))


def join_discharge(dates, lookup):
    """Pairs image dates with discharge by exact date. Dates without a
    discharge record are dropped.

    Returns
    -------
    list of (str, float)
    """
    joined, dropped = [], []
    for d in dates:
        key = format_date(d)
        if key in lookup:
            joined.append((key, lookup[key]))
        else:
            dropped.append(key)
    if dropped:
        logger.info(f'{len(dropped)} of {len(dropped) + len(joined)} image dates have no discharge record')
        logger.debug(f'Dates without discharge: {dropped}')
    return joined


class Station:
    '''
    Monitoring station: region of interest, seasonal zone and discharge
    class thresholds per season mode.
    '''

    def __init__(self, name, roi, zom, thresholds):
        self.name = name
        self.roi = roi
        self.zom = zom
        self.thresholds = thresholds
        self.discharge = {}

    def __repr__(self):
        return f'Station({self.name!r}, zom={self.zom!r})'

    @property
    def slug(self):
        return self.name.lower()

    @property
    def area_of_interest(self):
        return mapping(self.roi)

    def get_utm_epsg(self):
        centroid = self.roi.centroid
        return utm_epsg(centroid.x, centroid.y)

    def thresholds_for(self, season):
        if season not in self.thresholds:
            raise KeyError(f'No discharge thresholds for {self.name} / {season}')
        t = self.thresholds[season]
        return t['q1'], t['q2']

    def flow_class(self, discharge, season=COMBINED):
        q1, q2 = self.thresholds_for(season)
        return discharge_class(discharge, q1, q2)

    def load_discharge(self, discharge_dir, storage_options=None):
        src_url = f'{discharge_dir}/discharge_{self.slug}.csv'
        self.discharge = read_discharge(src_url, storage_options=storage_options)
        logger.info(f'Loaded {len(self.discharge)} discharge records for {self.name}')
        return self.discharge


def read_thresholds(path, storage_options=None):
    """Reads station, season, q1, q2 rows into the nested THRESHOLDS_DB layout."""
    df = pd.read_csv(path, storage_options=storage_options)
    out = {}
    for _, r in df.iterrows():
        out.setdefault(r['station'], {})[r['season']] = {'q1': float(r['q1']), 'q2': float(r['q2'])}
    return out


class StationDB:
    """Station reference tables: ROI polygons, seasonal zones, rainy season
    calendar and discharge class thresholds.
    """

    def __init__(self, roi_dir, season_db=None, thresholds=None, stations=None,
                 storage_options=None):
        """
        Parameters
        ----------
        roi_dir : str
            Directory holding <station>.geojson region files.
        season_db : str, optional
            CSV rainy season calendar; the built-in calendar is used if None.
        thresholds : str or dict, optional
            CSV path or nested dict of q1/q2 per station and season.
        stations : dict, optional
            {name: {"zom": code}}; defaults to cmhc.defaults.STATIONS.
        storage_options : dict, optional
            fsspec storage options for az:// paths.
        """
        self.roi_dir = roi_dir
        self.storage_options = storage_options
        self.stations_info = STATIONS if stations is None else stations
        if season_db is None:
            self.calendar = SeasonCalendar.from_records()
        else:
            self.calendar = SeasonCalendar.from_csv(season_db, storage_options=storage_options)
        if thresholds is None:
            self.thresholds = THRESHOLDS_DB
        elif isinstance(thresholds, dict):
            self.thresholds = thresholds
        else:
            self.thresholds = read_thresholds(thresholds, storage_options=storage_options)
        self.station = {}

    @property
    def names(self):
        return list(self.stations_info)

    def read_roi(self, name):
        path = os.path.join(self.roi_dir, f'{name.lower()}.geojson')
        if not path.startswith('az://') and not os.path.exists(path):
            raise FileNotFoundError(f'No region of interest file for {name} at {path}')
        gdf = gpd.read_file(path)
        if gdf.crs is not None:
            gdf = gdf.to_crs('epsg:4326')
        return gdf.geometry.union_all() if hasattr(gdf.geometry, 'union_all') else gdf.geometry.unary_union

    def get_station_data(self, station=None):
        '''
        gets all the station data if station is None.
        '''
        if station is None:
            for s in self.names:
                self.get_station_data(s)
        elif station in self.stations_info:
            self.station[station] = Station(station,
                                            self.read_roi(station),
                                            self.stations_info[station].get('zom'),
                                            self.thresholds.get(station, {}))
        else:
            raise KeyError(f'Unknown station {station!r}; expected one of {self.names}')

        self.sort_station_data()

    def sort_station_data(self):
        self.station = {key: value for key, value in sorted(self.station.items())}
