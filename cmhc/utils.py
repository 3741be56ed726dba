import datetime
import logging
import math
import os
import sys
from pathlib import Path

import folium
import geopandas as gpd
import numpy as np
import pandas as pd
from azure.storage.blob import BlobClient

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level='INFO', log_file=None):
    """Configures the root logger for the bin/ scripts.

    Parameters
    ----------
    level : str or int
        Logging level name (DEBUG, INFO, WARNING, ERROR) or constant.
    log_file : str, optional
        Additional file that receives the same records as stdout.

    Returns
    -------
    logging.Logger
        The package logger.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.handlers.clear()
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return logging.getLogger('cmhc')


def load_credentials(path='credentials'):
    """Reads a credentials file made of 'KEY = value' lines into the
    environment and returns Azure blob storage options for pandas/fsspec.
    """
    with open(path) as f:
        env_vars = f.read().split('\n')

    for var in env_vars:
        if not var.strip():
            continue
        key, value = var.split(' = ')
        os.environ[key] = value

    return {'account_name': os.environ['ACCOUNT_NAME'],
            'account_key': os.environ['BLOB_KEY']}


def format_date(d):
    """Normalizes a date, datetime, Timestamp or string to 'YYYY-MM-DD'."""
    if isinstance(d, str):
        return pd.Timestamp(d).strftime('%Y-%m-%d')
    if isinstance(d, (datetime.date, pd.Timestamp, np.datetime64)):
        return pd.Timestamp(d).strftime('%Y-%m-%d')
    raise TypeError(f'Cannot interpret {d!r} as a date')


def to_optional(value):
    """Returns value as a float, or None if it is missing (None or NaN)."""
    if value is None:
        return None
    value = float(value)
    if math.isnan(value):
        return None
    return value


def safe_ratio(c, m):
    """C / M, or None when either operand is undefined or M is zero."""
    c, m = to_optional(c), to_optional(m)
    if c is None or m is None or m == 0:
        return None
    return c / m


def safe_normalized_diff(m, w):
    """(M - W) / (M + W), or None when either operand is undefined or the
    sum is zero.
    """
    m, w = to_optional(m), to_optional(w)
    if m is None or w is None or m + w == 0:
        return None
    return (m - w) / (m + w)


def local_to_blob(container, localfile, blobname, storage_options):
    account_url = f"https://{storage_options['account_name']}.blob.core.windows.net"
    blobclient = BlobClient(account_url=account_url,\
                container_name=container,\
                blob_name=blobname,\
                credential=storage_options['account_key'])
    with open(f"{localfile}", "rb") as out_blob:
        blobclient.upload_blob(out_blob, overwrite=True)


def generate_map(stations, selections=None):
    '''
    plots web map of station regions and selected M pixels using folium

    stations : list of cmhc.stations.Station
    selections : dict, optional
        {station name: GeoDataFrame of selected M pixels} as written by
        cmhc.pixels.selections_to_gdf
    '''
    rois = gpd.GeoSeries([s.roi for s in stations], crs='epsg:4326')
    minx, miny, maxx, maxy = rois.total_bounds
    plot_map = folium.Map(location=[(miny + maxy) / 2, (minx + maxx) / 2],\
                zoom_start=11,\
                tiles='CartoDB positron')
    for station in stations:
        geo_j = gpd.GeoSeries([station.roi], crs='epsg:4326').to_json()
        geo_j = folium.GeoJson(data=geo_j,
                               name=station.name,
                               style_function=lambda x: {'fillColor': 'orange'})
        geo_j.add_to(plot_map)
        if selections and station.name in selections:
            for _, r in selections[station.name].iterrows():
                folium.CircleMarker(location=[r.geometry.y, r.geometry.x],
                    radius=4,
                    color='blue',
                    popup=f"{station.name} {r['season']} {r['flow_class']}: "
                          f"pixel {r['pixel_id']} (rho={r['rho']:.2f})").add_to(plot_map)
    folium.TileLayer(\
                tiles = 'https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}',\
                attr = 'Esri',\
                name = 'Esri Satellite',\
                overlay = False,\
                control = True).add_to(plot_map)
    folium.LayerControl().add_to(plot_map)
    return plot_map
