import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
import planetary_computer as pc
import stackstac
from pyproj import CRS
from pystac_client import Client
from rasterio import features
from rasterio import warp
from shapely.geometry import mapping

from cmhc.utils import format_date

logger = logging.getLogger(__name__)

PC_STAC_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"
COLLECTION = 'sentinel-2-l2a'

REFLECTANCE_BANDS = ['B02', 'B03', 'B04', 'B08', 'B11', 'B12']
SCL_BAND = 'SCL'
DEFAULT_ASSETS = REFLECTANCE_BANDS + [SCL_BAND]

# Scenes processed with baseline 04.00 (from 2022-01-25) carry a +1000 DN offset.
BOA_ADD_OFFSET = -1000
PROCESSING_BASELINE_DATE = pd.Timestamp('2022-01-25')


def utm_epsg(lon, lat):
    zone = int((lon + 180) // 6) + 1
    return CRS.from_dict({'proj': 'utm', 'zone': zone, 'south': lat < 0}).to_epsg()


def harmonize(arr, date, offset=BOA_ADD_OFFSET):
    """Shifts reflectance DN of post-baseline scenes back onto the older scale."""
    if pd.Timestamp(date) >= PROCESSING_BASELINE_DATE:
        return np.clip(arr + offset, 0, None)
    return arr


def roi_mask(roi, shape, transform, crs):
    """Boolean raster, True inside the (EPSG:4326) region of interest."""
    geom = warp.transform_geom('epsg:4326', crs, mapping(roi))
    return features.geometry_mask([geom], out_shape=shape, transform=transform, invert=True)


@dataclass
class DailyScene:
    """One per-day mosaic over a station, bands as 2d float arrays with NaN
    where there is no data.
    """
    date: str
    bands: dict
    transform: object = None
    crs: object = None

    @property
    def shape(self):
        return next(iter(self.bands.values())).shape

    def band(self, name):
        return self.bands.get(name)


class SceneSource:
    """Base class of per-day scene providers on a fixed grid.

    Subclasses set `shape`, `transform` and `crs` and implement `list_dates`
    and `_load_scene`.
    """

    def __init__(self, roi):
        self.roi = roi
        self._scenes = {}
        self._roi_mask = None

    def list_dates(self):
        raise NotImplementedError

    def _load_scene(self, date):
        raise NotImplementedError

    def get_scene(self, date):
        date = format_date(date)
        if date not in self._scenes:
            self._scenes[date] = self._load_scene(date)
        return self._scenes[date]

    def get_scenes(self, dates):
        return [self.get_scene(d) for d in dates]

    def get_roi_mask(self):
        if self._roi_mask is None:
            self._roi_mask = roi_mask(self.roi, self.shape, self.transform, self.crs)
        return self._roi_mask


class StacSceneSource(SceneSource):
    """Sentinel 2 L2A per-day mosaics over a region of interest from the
    Planetary Computer STAC API, stacked with stackstac on a UTM grid.
    """

    def __init__(self, roi, start_date, end_date, assets=None, resolution=10,
                 epsg=None, cloud_prob_asset=None, collection=COLLECTION,
                 catalog_url=PC_STAC_URL):
        """
        Parameters
        ----------
        roi : shapely geometry
            Region of interest in EPSG:4326.
        start_date, end_date : str
            Inclusive search range.
        assets : list of str, optional
            Asset keys to stack, defaults to the AWEIsh bands and SCL.
        resolution : int
            Pixel size in meters.
        epsg : int, optional
            Output CRS; the UTM zone of the ROI centroid if None.
        cloud_prob_asset : str, optional
            Per-pixel cloud probability asset to stack along with the others.
        """
        super().__init__(roi)
        self.start_date = format_date(start_date)
        self.end_date = format_date(end_date)
        self.assets = list(DEFAULT_ASSETS if assets is None else assets)
        self.cloud_prob_asset = cloud_prob_asset
        if cloud_prob_asset and cloud_prob_asset not in self.assets:
            self.assets.append(cloud_prob_asset)
        self.resolution = resolution
        centroid = roi.centroid
        self.epsg = epsg or utm_epsg(centroid.x, centroid.y)
        self.collection = collection
        self.catalog_url = catalog_url
        self.items = None
        self.stack = None

    @property
    def time_of_interest(self):
        return f'{self.start_date}/{self.end_date}'

    def build_catalog(self):
        '''
        Use pystac-client to search for Sentinel 2 L2A items over the ROI
        '''
        catalog = Client.open(self.catalog_url, modifier=pc.sign_inplace)
        logger.info(f'Searching {self.collection} for {self.time_of_interest}')
        search = catalog.search(
            collections=[self.collection],
            intersects=mapping(self.roi),
            datetime=self.time_of_interest
            )
        self.items = search.item_collection()
        logger.info(f'{len(self.items)} Items found')

    def build_stack(self):
        if self.items is None:
            self.build_catalog()
        if len(self.items) == 0:
            self.stack = None
            return
        stack = stackstac.stack(
            self.items,
            assets=self.assets,
            epsg=self.epsg,
            resolution=self.resolution,
            bounds_latlon=self.roi.bounds,
            dtype='float64',
            fill_value=np.nan,
            rescale=False
            )
        self.shape = (stack.sizes['y'], stack.sizes['x'])
        self.transform = stack.attrs['transform']
        self.crs = stack.attrs['crs']
        # Sentinel-2 uses 0 as nodata
        stack = stack.where(lambda x: x > 0, other=np.nan)
        days = pd.DatetimeIndex(stack['time'].values).strftime('%Y-%m-%d')
        self.stack = stack.assign_coords(day=('time', np.asarray(days)))

    def list_dates(self):
        if self.stack is None:
            self.build_stack()
        if self.stack is None:
            logger.warning(f'No matching images for {self.time_of_interest}')
            return []
        return sorted(set(self.stack['day'].values.tolist()))

    def get_roi_mask(self):
        if self.stack is None:
            self.build_stack()
        return super().get_roi_mask()

    def _load_scene(self, date):
        if self.stack is None:
            self.build_stack()
        day = self.stack.isel(time=np.flatnonzero(self.stack['day'].values == date))
        if day.sizes['time'] == 0:
            raise KeyError(f'No imagery on {date}')
        merged = stackstac.mosaic(day, dim='time').compute().values
        bands = {}
        for i, name in enumerate(day['band'].values.tolist()):
            arr = merged[i]
            if name in REFLECTANCE_BANDS:
                arr = harmonize(arr, date)
            bands[name] = arr
        return DailyScene(date, bands, self.transform, self.crs)
