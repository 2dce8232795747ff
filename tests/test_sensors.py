import pytest

from mangrove_extent.sensors import (
    COLLECTIONS,
    FEATURE_BANDS,
    INDEX_BANDS,
    REFLECTANCE_BANDS,
    SENSORS,
    get_product,
    get_sensor,
    sensor_for_year,
    years_for_sensor,
)


class TestSensorTable:

    def test_known_sensors(self):
        assert set(SENSORS) == {'landsat7', 'landsat8'}

    def test_every_sensor_maps_all_reflectance_bands(self):
        for spec in SENSORS.values():
            assert sorted(spec['bands']) == sorted(REFLECTANCE_BANDS)

    def test_band_mappings(self):
        assert get_sensor('landsat7')['bands']['NIR'] == 'B4'
        assert get_sensor('landsat8')['bands']['NIR'] == 'B5'
        assert get_sensor('landsat8')['bands']['BLUE'] == 'B2'

    def test_mndwi_thresholds(self):
        assert get_sensor('landsat7')['mndwi_threshold'] == 0.0
        assert get_sensor('landsat8')['mndwi_threshold'] == 0.07

    def test_feature_bands_exclude_mndwi(self):
        assert 'MNDWI' in INDEX_BANDS
        assert 'MNDWI' not in FEATURE_BANDS
        assert len(FEATURE_BANDS) == 10

    def test_unknown_sensor_lists_known_names(self):
        with pytest.raises(KeyError, match='landsat7'):
            get_sensor('sentinel2')


class TestYearLookup:

    @pytest.mark.parametrize('year, sensor', [
        (2000, 'landsat7'),
        (2013, 'landsat7'),
        (2014, 'landsat8'),
        (2020, 'landsat8'),
    ])
    def test_sensor_for_year(self, year, sensor):
        assert sensor_for_year(year) == sensor

    def test_year_outside_period(self):
        with pytest.raises(ValueError):
            sensor_for_year(1999)

    def test_years_cover_study_period_once(self):
        years = years_for_sensor('landsat7') + years_for_sensor('landsat8')
        assert years == list(range(2000, 2021))

    def test_reference_years(self):
        assert get_sensor('landsat7')['reference_year'] == 2000
        assert get_sensor('landsat8')['reference_year'] == 2014


class TestProducts:

    def test_collection2_is_the_default_layout(self):
        product = get_product('landsat7')

        assert product['collection'] == 'c2'
        assert product['qa_band'] == 'qa_pixel'
        assert product['qa_bits'] == {'cloud_shadow': 4, 'cloud': 3, 'cloud_confidence': None}
        assert product['scale_factor'] == 2.75e-5
        assert product['offset'] == -0.2
        assert product['bands']['NIR'] == 'B4'

    def test_collection1_confidence_bit_only_for_landsat7(self):
        assert get_product('landsat7', 'c1')['qa_bits']['cloud_confidence'] == 7
        assert get_product('landsat8', 'c1')['qa_bits']['cloud_confidence'] is None

    def test_lookup_leaves_tables_untouched(self):
        get_product('landsat8', 'c1')

        assert COLLECTIONS['c1']['qa_bits']['cloud_confidence'] == 7
        assert 'qa_band' not in SENSORS['landsat8']

    def test_unknown_collection(self):
        with pytest.raises(KeyError, match='c2'):
            get_product('landsat8', 'c3')
