"""
Shared fixtures: a small synthetic UTM grid with a river running north to
south, and an in-memory scene source built on it.
"""

import numpy as np
import pytest
from pyproj import Transformer
from rasterio.transform import from_origin
from shapely.geometry import Polygon

from cmhc.defaults import PipelineConfig
from cmhc.imagery import DailyScene, SceneSource
from cmhc.stations import SeasonCalendar, Station

CRS = 'epsg:32749'
SHAPE = (20, 20)
ORIGIN = (420000.0, 9140000.0)
RES = 10.0
RIVER_COLS = slice(8, 12)


class InMemorySceneSource(SceneSource):
    """Scene source over a fixed dict of DailyScene objects."""

    def __init__(self, roi, scenes, shape=SHAPE, transform=None, crs=CRS):
        super().__init__(roi)
        self.scenes = {s.date: s for s in scenes}
        self.shape = shape
        self.transform = transform or from_origin(ORIGIN[0], ORIGIN[1], RES, RES)
        self.crs = crs
        self.loaded = []

    def list_dates(self):
        return sorted(self.scenes)

    def _load_scene(self, date):
        self.loaded.append(date)
        return self.scenes[date]


def grid_roi():
    """The grid extent as an EPSG:4326 polygon."""
    x0, y1 = ORIGIN
    x1, y0 = x0 + SHAPE[1] * RES, y1 - SHAPE[0] * RES
    t = Transformer.from_crs(CRS, 'epsg:4326', always_xy=True)
    corners = [t.transform(x, y) for x, y in [(x0, y0), (x0, y1), (x1, y1), (x1, y0)]]
    return Polygon(corners)


def make_scene(date, water_b08=300.0, land_b08=3000.0, cloud_rows=0, nodata_rows=0,
               cloud_prob=None):
    """Synthetic per-day mosaic: water (AWEIsh > 0) in RIVER_COLS, land
    elsewhere. The first `cloud_rows` rows are flagged SCL 9 and the last
    `nodata_rows` rows have no B04.
    """
    water = np.zeros(SHAPE, dtype=bool)
    water[:, RIVER_COLS] = True

    def band(w, l):
        return np.where(water, w, l).astype(float)

    bands = {'B02': band(1000, 500),
             'B03': band(1200, 700),
             'B04': band(800, 1000),
             'B08': band(water_b08, land_b08),
             'B11': band(200, 2500),
             'B12': band(100, 1500),
             'SCL': band(6, 4)}
    if cloud_rows:
        bands['SCL'][:cloud_rows, :] = 9
    if nodata_rows:
        bands['B04'][-nodata_rows:, :] = np.nan
    if cloud_prob is not None:
        bands['cloud_prob'] = np.full(SHAPE, float(cloud_prob))
    return DailyScene(date, bands, from_origin(ORIGIN[0], ORIGIN[1], RES, RES), CRS)


TRAIN = [('2020-01-10', 5.0), ('2020-02-09', 8.0), ('2020-03-10', 12.0),
         ('2020-07-08', 15.0), ('2020-08-07', 25.0), ('2020-09-06', 30.0)]
TEST = [('2022-02-03', 6.0), ('2022-05-04', 18.0), ('2022-08-02', 40.0)]


@pytest.fixture
def roi():
    return grid_roi()


@pytest.fixture
def station(roi):
    thresholds = {'combined': {'q1': 10.0, 'q2': 20.0},
                  'rainy': {'q1': 7.0, 'q2': 50.0},
                  'dry': {'q1': 20.0, 'q2': 50.0}}
    st = Station('Kalibawang', roi, 'ZOM_01', thresholds)
    st.discharge = dict(TRAIN + TEST)
    return st


@pytest.fixture
def calendar():
    return SeasonCalendar.from_records([
        {'zom': 'ZOM_01', 'station': 'Kalibawang', 'start': '2019-11-01', 'end': '2020-05-20'},
        {'zom': 'ZOM_01', 'station': 'Kalibawang', 'start': '2021-10-11', 'end': '2022-06-10'},
    ])


@pytest.fixture
def scenes():
    out = []
    for i, (date, _) in enumerate(TRAIN + TEST):
        out.append(make_scene(date, water_b08=300.0 + 10 * i))
    # accepted image date without a discharge record
    out.append(make_scene('2020-10-06', water_b08=290.0))
    return out


@pytest.fixture
def source(roi, scenes):
    return InMemorySceneSource(roi, scenes)


@pytest.fixture
def config():
    return PipelineConfig(start_date='2020-01-01', end_date='2022-12-31',
                          train_period=('2020-01-01', '2020-12-31'),
                          test_period=('2022-01-01', '2022-12-31'),
                          m_buffer_pix=2)
