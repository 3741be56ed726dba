"""
End-to-end runs of the feature extractor over the synthetic scene source.
"""

import os
from dataclasses import replace

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

from cmhc.features import FEATURE_COLUMNS
from cmhc.pipeline import FeatureExtractor

from conftest import TEST, TRAIN

TRAIN_DATES = [d for d, _ in TRAIN] + ['2020-10-06']
TEST_DATES = [d for d, _ in TEST]


@pytest.fixture
def extractor(station, source, calendar, config):
    return FeatureExtractor(station, source, calendar, config, TRAIN_DATES, TEST_DATES)


class TestCombined:

    def test_run(self, extractor):
        out = extractor.run()
        assert list(out) == ['combined']
        train, test = out['combined']['train'], out['combined']['test']
        assert list(train.columns) == FEATURE_COLUMNS
        # 2020-10-06 has no discharge record
        assert train['date'].tolist() == [d for d, _ in TRAIN]
        assert test['date'].tolist() == TEST_DATES
        assert (train['season'] == 'combined').all()
        assert train['C'].tolist() == [3000.0] * len(TRAIN)

    def test_water_and_candidates(self, extractor):
        extractor.run()
        assets = extractor.assets['combined']
        assert extractor.water[:, 8:12].all() and extractor.water.sum() == 80
        assert assets.masks.m.sum() == 160
        assert len(assets.candidates) == 160
        assert (assets.q1, assets.q2) == (10.0, 20.0)
        assert assets.n_train == len(TRAIN)

    def test_selection(self, extractor):
        extractor.run()
        selections = extractor.assets['combined'].selections
        for k in ['Low', 'Medium', 'High']:
            s = selections[k]
            # every river pixel ties at rho = -1, the first one in row-major order wins
            assert (s.pixel_id, s.row, s.col) == (2, 0, 8)
            assert s.rho == pytest.approx(-1.0)
            assert s.n_obs == 2

    def test_feature_values(self, extractor):
        out = extractor.run()
        test = out['combined']['test'].set_index('date')
        # seventh scene of the source has water B08 = 360
        assert test.loc['2022-02-03', 'M_low'] == 360.0
        assert test.loc['2022-02-03', 'ratio_C_M_low'] == pytest.approx(3000 / 360)
        assert test.loc['2022-02-03', 'MW_low'] == pytest.approx(0.0)

    def test_no_test_period_leakage(self, station, source, calendar, config):
        full = FeatureExtractor(station, source, calendar, config, TRAIN_DATES, TEST_DATES)
        full.run()
        train_only = FeatureExtractor(station, source, calendar, config, TRAIN_DATES, [])
        train_only.run()
        a, b = full.assets['combined'], train_only.assets['combined']
        assert (a.masks.c == b.masks.c).all()
        assert (a.masks.w == b.masks.w).all()
        assert (a.masks.m == b.masks.m).all()
        assert a.selections == b.selections

    def test_deterministic(self, station, source, calendar, config):
        runs = []
        for _ in range(2):
            fe = FeatureExtractor(station, source, calendar, config, TRAIN_DATES, TEST_DATES)
            out = fe.run()
            runs.append((fe.assets['combined'].selections, out['combined']['test']))
        assert runs[0][0] == runs[1][0]
        pd.testing.assert_frame_equal(runs[0][1], runs[1][1])

    def test_parallel_matches_serial(self, station, source, calendar, config):
        serial = FeatureExtractor(station, source, calendar, config, TRAIN_DATES, TEST_DATES).run()
        parallel = FeatureExtractor(station, source, calendar, replace(config, n_workers=3),
                                    TRAIN_DATES, TEST_DATES).run()
        pd.testing.assert_frame_equal(serial['combined']['train'], parallel['combined']['train'])

    def test_export(self, extractor, tmp_path):
        extractor.run()
        written = extractor.export(str(tmp_path))
        names = sorted(os.path.basename(f) for f in written)
        assert names == sorted(['features_train_kalibawang_combined_2020_2020.csv',
                                'features_test_kalibawang_combined_2022_2022.csv',
                                'M_pixels_combined_KALIBAWANG_2020_2020.geojson',
                                'C_combined_KALIBAWANG_2020_2020.tif',
                                'W_combined_KALIBAWANG_2020_2020.tif'])
        df = pd.read_csv(tmp_path / 'features_test_kalibawang_combined_2022_2022.csv')
        assert list(df.columns) == FEATURE_COLUMNS
        gdf = gpd.read_file(tmp_path / 'M_pixels_combined_KALIBAWANG_2020_2020.geojson')
        assert sorted(gdf['flow_class']) == ['High', 'Low', 'Medium']
        assert np.allclose(gdf['rho'], -1.0)

    def test_no_training_dates(self, station, source, calendar, config):
        fe = FeatureExtractor(station, source, calendar, config, [], TEST_DATES)
        assert fe.run() is None


class TestSeasonal:

    @pytest.fixture
    def seasonal(self, config):
        return replace(config, seasonal=True)

    def test_run(self, station, source, calendar, seasonal):
        fe = FeatureExtractor(station, source, calendar, seasonal, TRAIN_DATES, TEST_DATES)
        out = fe.run()
        assert list(out) == ['rainy', 'dry']
        assert out['rainy']['train']['date'].tolist() == ['2020-01-10', '2020-02-09', '2020-03-10']
        assert out['dry']['train']['date'].tolist() == ['2020-07-08', '2020-08-07', '2020-09-06']
        assert out['rainy']['test']['date'].tolist() == ['2022-02-03', '2022-05-04']
        assert out['dry']['test']['date'].tolist() == ['2022-08-02']
        assert (out['dry']['test']['season'] == 'dry').all()

    def test_per_season_selection(self, station, source, calendar, seasonal):
        fe = FeatureExtractor(station, source, calendar, seasonal, TRAIN_DATES, TEST_DATES)
        out = fe.run()
        for season in ['rainy', 'dry']:
            sel = fe.assets[season].selections
            # one Low date per season: too few observations for a correlation
            assert sel['Low'] is None
            assert sel['Medium'] is not None
            assert sel['High'] is None
            assert out[season]['test']['M_low'].isna().all()
            assert out[season]['test']['M_medium'].notna().all()

    def test_export_names(self, station, source, calendar, seasonal, tmp_path):
        fe = FeatureExtractor(station, source, calendar, seasonal, TRAIN_DATES, TEST_DATES)
        fe.run()
        names = {os.path.basename(f) for f in fe.export(str(tmp_path))}
        assert 'features_train_kalibawang_rainy_2020_2020.csv' in names
        assert 'features_test_kalibawang_dry_2022_2022.csv' in names
        assert 'M_pixels_dry_KALIBAWANG_2020_2020.geojson' in names
        assert 'C_rainy_KALIBAWANG_2020_2020.tif' in names

    def test_missing_season_thresholds(self, station, source, calendar, seasonal):
        del station.thresholds['dry']
        fe = FeatureExtractor(station, source, calendar, seasonal, TRAIN_DATES, TEST_DATES)
        with pytest.raises(KeyError):
            fe.run()
