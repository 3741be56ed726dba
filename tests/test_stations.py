import geopandas as gpd
import pytest

from cmhc.defaults import DRY, RAINY, STATIONS
from cmhc.stations import (SeasonCalendar, Station, StationDB, join_discharge,
                           read_discharge, read_thresholds)


class TestSeasonCalendar:

    def test_interval_bounds_are_rainy(self, calendar):
        assert calendar.label('2019-11-01', station='Kalibawang') == RAINY
        assert calendar.label('2020-05-20', station='Kalibawang') == RAINY

    def test_day_outside_is_dry(self, calendar):
        assert calendar.label('2019-10-31', station='Kalibawang') == DRY
        assert calendar.label('2020-05-21', station='Kalibawang') == DRY

    def test_lookup_by_zone(self, calendar):
        assert calendar.label('2020-01-15', zom='ZOM_01') == RAINY
        assert calendar.label('2020-01-15', zom='ZOM_06') == DRY

    def test_intervals_clipped_to_period(self, calendar):
        intervals = calendar.intervals_for(zom='ZOM_01', start='2022-01-01', end='2024-12-31')
        assert len(intervals) == 1
        assert str(intervals[0].start) == '2021-10-11'

    def test_label_dates(self, calendar):
        labels = calendar.label_dates(['2020-01-01', '2020-08-01'], station='Kalibawang')
        assert labels == [RAINY, DRY]

    def test_builtin_calendar_covers_every_station(self):
        cal = SeasonCalendar.from_records()
        for name, info in STATIONS.items():
            assert cal.intervals_for(station=name)
            assert cal.intervals_for(zom=info['zom'])

    def test_from_csv(self, tmp_path):
        path = tmp_path / 'seasons.csv'
        path.write_text('zom,station,start,end\nZOM_06,Bendungan,2020-10-11,2021-04-30\n')
        cal = SeasonCalendar.from_csv(str(path))
        assert cal.label('2021-04-30', station='Bendungan') == RAINY
        assert cal.label('2021-05-01', station='Bendungan') == DRY

    def test_from_csv_requires_columns(self, tmp_path):
        path = tmp_path / 'seasons.csv'
        path.write_text('zom,station,begin\nZOM_06,Bendungan,2020-10-11\n')
        with pytest.raises(ValueError):
            SeasonCalendar.from_csv(str(path))


class TestDischarge:

    def test_read_discharge_parses_and_clips(self, tmp_path):
        path = tmp_path / 'discharge.csv'
        path.write_text('date,debit\n'
                        '2020-01-02,"12.5"\n'
                        '2020-01-01,-3\n'
                        '2020-01-03,abc\n'
                        '2020-01-04,\n'
                        '2020-01-02,13.0\n')
        lookup = read_discharge(str(path))
        assert list(lookup) == ['2020-01-01', '2020-01-02']
        assert lookup['2020-01-01'] == 0.0
        assert lookup['2020-01-02'] == 13.0

    def test_read_discharge_alternate_column(self, tmp_path):
        path = tmp_path / 'discharge.csv'
        path.write_text('date,discharge\n2021-06-01 00:00:00,4.2\n')
        assert read_discharge(str(path)) == {'2021-06-01': 4.2}

    def test_read_discharge_missing_column(self, tmp_path):
        path = tmp_path / 'discharge.csv'
        path.write_text('date,flow\n2021-06-01,4.2\n')
        with pytest.raises(ValueError):
            read_discharge(str(path))

    def test_join_drops_dates_without_discharge(self, caplog):
        lookup = {'2020-01-01': 1.0, '2020-01-03': 3.0}
        with caplog.at_level('INFO'):
            joined = join_discharge(['2020-01-01', '2020-01-02', '2020-01-03'], lookup)
        assert joined == [('2020-01-01', 1.0), ('2020-01-03', 3.0)]
        assert '1 of 3 image dates have no discharge record' in caplog.text


class TestStation:

    def test_flow_class(self, station):
        assert station.flow_class(20.0) == 'High'
        assert station.flow_class(10.0) == 'Medium'
        assert station.flow_class(9.99) == 'Low'
        assert station.flow_class(11.0, 'rainy') == 'Medium'
        assert station.flow_class(6.0, 'rainy') == 'Low'

    def test_missing_thresholds(self, station):
        with pytest.raises(KeyError):
            station.thresholds_for('monsoon')

    def test_utm_epsg(self, station):
        assert station.get_utm_epsg() == 32749

    def test_load_discharge(self, station, tmp_path):
        (tmp_path / 'discharge_kalibawang.csv').write_text('date,debit\n2020-01-01,3.5\n')
        assert station.load_discharge(str(tmp_path)) == {'2020-01-01': 3.5}
        assert station.discharge == {'2020-01-01': 3.5}


class TestStationDB:

    def test_get_station_data(self, tmp_path, roi):
        gpd.GeoDataFrame(geometry=[roi], crs='epsg:4326').to_file(
            tmp_path / 'kedungmiri.geojson', driver='GeoJSON')
        ds = StationDB(str(tmp_path))
        ds.get_station_data('Kedungmiri')
        st = ds.station['Kedungmiri']
        assert st.zom == 'ZOM_07'
        assert st.thresholds_for('combined') == (10.4, 26.3)
        assert st.roi.bounds == pytest.approx(roi.bounds)

    def test_unknown_station(self, tmp_path):
        with pytest.raises(KeyError):
            StationDB(str(tmp_path)).get_station_data('Progo')

    def test_missing_roi(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            StationDB(str(tmp_path)).get_station_data('Bendungan')

    def test_thresholds_from_csv(self, tmp_path):
        path = tmp_path / 'thr.csv'
        path.write_text('station,season,q1,q2\nBendungan,combined,1.0,2.0\nBendungan,dry,0.5,1.5\n')
        thr = read_thresholds(str(path))
        assert thr == {'Bendungan': {'combined': {'q1': 1.0, 'q2': 2.0},
                                     'dry': {'q1': 0.5, 'q2': 1.5}}}
        ds = StationDB(str(tmp_path), thresholds=str(path))
        assert ds.thresholds == thr

    def test_station_repr(self, roi):
        assert repr(Station('Bendungan', roi, 'ZOM_06', {})) == "Station('Bendungan', zom='ZOM_06')"
