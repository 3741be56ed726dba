import logging
import os
from dataclasses import dataclass

import geopandas as gpd

from cmhc.defaults import COMBINED, DRY, RAINY
from cmhc.features import extract_features, masked_mean
from cmhc.masks import (CandidateMasks, build_candidate_masks, permanent_water_mask,
                        sample_candidates, water_frequency, write_mask_tif)
from cmhc.partition import period_tag
from cmhc.pixels import build_observations, select_best_pixels, selections_to_gdf
from cmhc.stations import join_discharge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StationAssets:
    """Candidate masks and best M pixels of one station and season tag, built
    from the training period only.
    """
    season: str
    masks: CandidateMasks
    candidates: gpd.GeoDataFrame
    selections: dict
    q1: float
    q2: float
    n_train: int


class FeatureExtractor:
    '''
    Builds C/W/M assets from the training dates of a station and extracts a
    per-date feature table for the training and testing dates.
    '''

    def __init__(self, station, source, calendar, config, train_dates, test_dates):
        """
        Parameters
        ----------
        station : cmhc.stations.Station
            With discharge already loaded.
        source : cmhc.imagery.SceneSource
            Per-day scenes covering both periods.
        calendar : cmhc.stations.SeasonCalendar
        config : cmhc.defaults.PipelineConfig
        train_dates, test_dates : list of str
            Accepted image dates of each period.
        """
        self.station = station
        self.source = source
        self.calendar = calendar
        self.config = config
        self.train_dates = sorted(train_dates)
        self.test_dates = sorted(test_dates)
        self.water = None
        self.assets = {}
        self.features = {}

    def season_labels(self, dates, period):
        return self.calendar.label_dates(dates, zom=self.station.zom,
                                         start=period[0], end=period[1])

    def build_water_mask(self):
        scenes = self.source.get_scenes(self.train_dates)
        freq = water_frequency(scenes)
        self.water = permanent_water_mask(freq, self.config.water_freq_thr)
        logger.info(f'{self.station.name}: {int(self.water.sum())} permanent water pixels '
                    f'from {len(scenes)} training scenes')
        return self.water

    def define_assets(self, season, pairs):
        """Candidate masks and best M pixel per discharge class for one season
        tag from its training (date, discharge) pairs.
        """
        cfg = self.config
        roi = self.source.get_roi_mask()
        scenes = self.source.get_scenes([d for d, _ in pairs])
        masks = build_candidate_masks(self.water, scenes, roi,
                                      band=cfg.band,
                                      m_buffer_pix=cfg.m_buffer_pix,
                                      percentile=cfg.percentile,
                                      floor=cfg.percentile_floor,
                                      transform=self.source.transform,
                                      crs=self.source.crs)
        candidates = sample_candidates(masks.m, self.source.transform, self.source.crs)
        q1, q2 = self.station.thresholds_for(season)

        rows = candidates['row'].to_numpy(dtype=int)
        cols = candidates['col'].to_numpy(dtype=int)
        samples = []
        for scene, (date, q) in zip(scenes, pairs):
            arr = scene.band(cfg.band)
            samples.append({'date': date,
                            'discharge': q,
                            'flow_class': self.station.flow_class(q, season),
                            'C': masked_mean(arr, masks.c & masks.roi),
                            'M': arr[rows, cols]})
        observations = build_observations(samples, candidates['pixel_id'].to_numpy())
        logger.info(f'{self.station.name} {season}: {len(candidates)} M candidates, '
                    f'{len(observations)} observations from {len(pairs)} dates')
        selections = select_best_pixels(observations, candidates)

        assets = StationAssets(season, masks, candidates, selections, q1, q2, len(pairs))
        self.assets[season] = assets
        return assets

    def run(self):
        '''
        returns {season tag: {"train": DataFrame, "test": DataFrame}} or
        None when there is no training imagery
        '''
        cfg = self.config
        if not self.train_dates:
            logger.warning(f'No training dates for {self.station.name}. Skipping...')
            return None

        train_pairs = join_discharge(self.train_dates, self.station.discharge)
        test_pairs = join_discharge(self.test_dates, self.station.discharge)
        self.build_water_mask()

        if cfg.seasonal:
            train_labels = self.season_labels([d for d, _ in train_pairs], cfg.train_period)
            test_labels = self.season_labels([d for d, _ in test_pairs], cfg.test_period)
            groups = {}
            for season in [RAINY, DRY]:
                groups[season] = ([p for p, s in zip(train_pairs, train_labels) if s == season],
                                  [p for p, s in zip(test_pairs, test_labels) if s == season])
        else:
            groups = {COMBINED: (train_pairs, test_pairs)}

        for season, (train, test) in groups.items():
            assets = self.define_assets(season, train)
            self.features[season] = {
                'train': extract_features(self.source, train, season, assets.masks,
                                          assets.selections, cfg.band, cfg.n_workers),
                'test': extract_features(self.source, test, season, assets.masks,
                                         assets.selections, cfg.band, cfg.n_workers)
            }
        return self.features

    def export(self, out_dir):
        """Writes feature tables, the selected M pixels and the C / W masks.

        Returns
        -------
        list of str
            Paths of the files written.
        """
        if not os.path.exists(out_dir):
            os.makedirs(out_dir)
        cfg = self.config
        name = self.station.name
        train_tag, test_tag = period_tag(cfg.train_period), period_tag(cfg.test_period)
        written = []
        for season, tables in self.features.items():
            for split, tag in [('train', train_tag), ('test', test_tag)]:
                out_name = f'{out_dir}/features_{split}_{name.lower()}_{season}_{tag}.csv'
                tables[split].to_csv(out_name, index=False)
                written.append(out_name)

            assets = self.assets[season]
            gdf = selections_to_gdf(assets.selections, name, season)
            if len(gdf):
                out_name = f'{out_dir}/M_pixels_{season}_{name.upper()}_{train_tag}.geojson'
                gdf.to_file(out_name, driver='GeoJSON')
                written.append(out_name)
            else:
                logger.warning(f'No M pixel selected for {name} {season}, no pixel file written')

            for label, mask in [('C', assets.masks.c), ('W', assets.masks.w)]:
                out_name = f'{out_dir}/{label}_{season}_{name.upper()}_{train_tag}.tif'
                write_mask_tif(mask, assets.masks.transform, assets.masks.crs, out_name)
                written.append(out_name)
        logger.info(f'Wrote {len(written)} files for {name} to {out_dir}')
        return written
