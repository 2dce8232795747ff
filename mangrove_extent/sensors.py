"""
Sensor generations and their band mappings.

Each entry maps the sensor-agnostic band names used downstream (BLUE, GREEN,
RED, NIR, SWIR1, SWIR2) to the source band variable of the datacube and
carries the MNDWI water threshold applied to that generation's composites.

The QA bit layout, reflectance scale and offset and the fill value depend on
the Landsat collection the scenes come from and live in ``COLLECTIONS``.
Use :func:`get_product` to combine the two.
"""

from typing import Dict, List, Optional


# Collection 1 surface reflectance QA ("pixel_qa") bits
C1_QA_CLOUD_SHADOW_BIT = 3
C1_QA_CLOUD_BIT = 5
C1_QA_CLOUD_CONFIDENCE_BIT = 7

# Collection 2 Level-2 QA ("qa_pixel") bits
C2_QA_CLOUD_BIT = 3
C2_QA_CLOUD_SHADOW_BIT = 4

DEFAULT_COLLECTION = 'c2'

# reflectance = DN * scale_factor + offset
COLLECTIONS: Dict[str, Dict] = {
    'c1': {
        'description': 'Landsat Collection 1 surface reflectance',
        'qa_band': 'pixel_qa',
        'qa_bits': {
            'cloud_shadow': C1_QA_CLOUD_SHADOW_BIT,
            'cloud': C1_QA_CLOUD_BIT,
            'cloud_confidence': C1_QA_CLOUD_CONFIDENCE_BIT,
        },
        'scale_factor': 1e-4,
        'offset': 0.0,
        'fill_value': -9999,
    },
    'c2': {
        'description': 'Landsat Collection 2 Level-2 surface reflectance',
        'qa_band': 'qa_pixel',
        'qa_bits': {
            'cloud_shadow': C2_QA_CLOUD_SHADOW_BIT,
            'cloud': C2_QA_CLOUD_BIT,
            'cloud_confidence': None,
        },
        'scale_factor': 2.75e-5,
        'offset': -0.2,
        'fill_value': 0,
    },
}


REFLECTANCE_BANDS = ['BLUE', 'GREEN', 'RED', 'NIR', 'SWIR1', 'SWIR2']
INDEX_BANDS = ['NDVI', 'MNDWI', 'CMRI', 'NDMI', 'MMRI']

# MNDWI only drives the water mask and is not a classifier input
FEATURE_BANDS = [
    'BLUE', 'GREEN', 'RED', 'NIR', 'SWIR1', 'SWIR2',
    'NDVI', 'CMRI', 'NDMI', 'MMRI',
]

MANGROVE_CLASS = 1
NON_MANGROVE_CLASS = 0

SENSORS: Dict[str, Dict] = {
    'landsat7': {
        'description': 'Landsat 7 ETM+ surface reflectance',
        'bands': {
            'BLUE': 'B1',
            'GREEN': 'B2',
            'RED': 'B3',
            'NIR': 'B4',
            'SWIR1': 'B5',
            'SWIR2': 'B7',
        },
        'cloud_confidence': True,
        'edge_mask': True,
        'mndwi_threshold': 0.0,
        'years': (2000, 2013),
        'reference_year': 2000,
    },
    'landsat8': {
        'description': 'Landsat 8 OLI surface reflectance',
        'bands': {
            'BLUE': 'B2',
            'GREEN': 'B3',
            'RED': 'B4',
            'NIR': 'B5',
            'SWIR1': 'B6',
            'SWIR2': 'B7',
        },
        'cloud_confidence': False,
        'edge_mask': False,
        'mndwi_threshold': 0.07,
        'years': (2014, 2020),
        'reference_year': 2014,
    },
}


def get_sensor(name: str) -> Dict:
    """Look up a sensor generation by name."""
    try:
        return SENSORS[name]
    except KeyError:
        raise KeyError(f"Unknown sensor '{name}'. Known sensors: {sorted(SENSORS)}")


def get_product(name: str, collection: Optional[str] = None) -> Dict:
    """
    Sensor entry combined with the product layout of a Landsat collection.

    The cloud-confidence bit is only applied for sensors that flag
    ``cloud_confidence`` and collections that define one.

    Parameters
    ----------
    name : str
        Sensor generation name
    collection : str, optional
        'c1' or 'c2'; defaults to ``DEFAULT_COLLECTION``

    Returns
    -------
    dict
        Sensor fields plus qa_band, qa_bits, scale_factor, offset,
        fill_value and collection
    """
    collection = collection or DEFAULT_COLLECTION
    if collection not in COLLECTIONS:
        raise KeyError(
            f"Unknown Landsat collection '{collection}'. Known collections: {sorted(COLLECTIONS)}"
        )

    product = dict(get_sensor(name))
    product.update(COLLECTIONS[collection])

    qa_bits = dict(product['qa_bits'])
    if not product['cloud_confidence']:
        qa_bits['cloud_confidence'] = None
    product['qa_bits'] = qa_bits
    product['collection'] = collection

    return product


def sensor_for_year(year: int) -> str:
    """
    Name of the sensor generation whose span covers ``year``.

    Raises
    ------
    ValueError
        If no generation covers the year
    """
    for name, sensor in SENSORS.items():
        first, last = sensor['years']
        if first <= year <= last:
            return name
    raise ValueError(f"No sensor generation covers year {year}")


def years_for_sensor(name: str) -> List[int]:
    first, last = get_sensor(name)['years']
    return list(range(first, last + 1))
