from dataclasses import dataclass, field

args_info = {
    "station": {
        "default": None,
        "type": str,
        "choices": ["Kalibawang", "Bendungan", "Kedungmiri"],
        "help": "For which station should this script run? If omitted, all \
            stations in the station table are processed."
    },
    "start_date": {
        "default": "2019-01-01",
        "type": str,
        "help": "The earliest date for which to search Sentinel 2 imagery"
    },
    "end_date": {
        "default": "2024-12-31",
        "type": str,
        "help": "The latest date for which to search Sentinel 2 imagery"
    },
    "cloud_prob_thr": {
        "default": 20,
        "type": int,
        "help": "Cloud probability (0-100) above which a pixel is counted as \
            cloudy. Only used when a cloud probability asset is available."
    },
    "valid_pixel_thr": {
        "default": 95,
        "type": int,
        "help": "Minimum percent of the station region that must hold valid \
            (non-masked) reflectance for a date to be kept."
    },
    "final_cloud_thr": {
        "default": 10,
        "type": int,
        "help": "Percent of the station region covered by cloud, cirrus or \
            cloud shadow above which a date is rejected."
    },
    "cloud_prob_asset": {
        "default": None,
        "type": str,
        "help": "Name of a per-pixel cloud probability asset on the STAC \
            items, if the collection has one. When not set, only the Scene \
            Classification Layer is used to flag bad pixels."
    },
    "roi_dir": {
        "default": "data/roi",
        "type": str,
        "help": "Directory holding one vector file per station \
            (<station>.geojson) with the region of interest polygon."
    },
    "out_dir": {
        "default": "data/exports",
        "type": str,
        "help": "Local directory where output tables, masks and pixel files are \
            written."
    },
    "season_db": {
        "default": None,
        "type": str,
        "help": "CSV with columns zom, station, start, end listing rainy \
            season intervals. The built-in calendar is used if omitted."
    },
    "thresholds": {
        "default": None,
        "type": str,
        "help": "CSV with columns station, season, q1, q2 holding discharge \
            class break points. The built-in table is used if omitted."
    },
    "discharge_dir": {
        "default": "data/discharge",
        "type": str,
        "help": "Directory or az:// URL holding discharge_<station>.csv files \
            with columns date and debit."
    },
    "train_start": {
        "default": "2019-01-01",
        "type": str,
        "help": "First day of the training period."
    },
    "train_end": {
        "default": "2021-12-31",
        "type": str,
        "help": "Last day of the training period."
    },
    "test_start": {
        "default": "2022-01-01",
        "type": str,
        "help": "First day of the testing period."
    },
    "test_end": {
        "default": "2024-12-31",
        "type": str,
        "help": "Last day of the testing period."
    },
    "seasonal": {
        "action": "store_true", # ensures the default value is False
        "help": "Build separate rainy and dry season pixel sets instead of a \
            single combined set."
    },
    "water_freq_thr": {
        "default": 0.30,
        "type": float,
        "help": "Minimum fraction of training dates a pixel must be detected \
            as water (AWEIsh > 0) to belong to the permanent water body."
    },
    "m_buffer_pix": {
        "default": 3,
        "type": int,
        "help": "Radius (in pixels) used to dilate the permanent water mask \
            into the measurement (M) pixel candidate area."
    },
    "resolution": {
        "default": 10,
        "type": int,
        "help": "Output pixel size (meters) of the stacked Sentinel 2 mosaics."
    },
    "n_workers": {
        "default": 1,
        "type": int,
        "help": "How many threads to use for per-date feature extraction."
    },
    "compute_thresholds": {
        "action": "store_true", # ensures the default value is False
        "help": "Derive discharge class thresholds with Jenks natural breaks \
            over the training discharge and write them out."
    },
    "write_to_csv": {
        "action": "store_true", # ensures the default value is False
        "help": "Write out CSVs to out_dir?"
    },
    "upload": {
        "action": "store_true", # ensures the default value is False
        "help": "Upload written files to Azure blob storage (requires a \
            credentials file)."
    },
    "container": {
        "default": "cmhc-data",
        "type": str,
        "help": "Azure blob storage container used with --upload."
    },
    "credentials": {
        "default": "credentials",
        "type": str,
        "help": "Path to the credentials file (lines of 'KEY = value')."
    },
    "log_level": {
        "default": "INFO",
        "type": str,
        "choices": ["DEBUG", "INFO", "WARNING", "ERROR"],
        "help": "Logging verbosity."
    }
}

# Rainy seasons per station, aligned with the ZOM (seasonal zone) calendars.
RAINY_SEASON_DB = [
    # Kalibawang (ZOM_01)
    {"zom": "ZOM_01", "station": "Kalibawang", "start": "2019-11-01", "end": "2020-05-20"},
    {"zom": "ZOM_01", "station": "Kalibawang", "start": "2020-10-11", "end": "2021-06-10"},
    {"zom": "ZOM_01", "station": "Kalibawang", "start": "2021-10-11", "end": "2022-06-10"},
    {"zom": "ZOM_01", "station": "Kalibawang", "start": "2022-10-01", "end": "2023-05-20"},
    {"zom": "ZOM_01", "station": "Kalibawang", "start": "2023-11-11", "end": "2024-05-20"},
    {"zom": "ZOM_01", "station": "Kalibawang", "start": "2024-10-11", "end": "2024-12-31"},
    # Bendungan (ZOM_06)
    {"zom": "ZOM_06", "station": "Bendungan", "start": "2019-10-21", "end": "2020-05-01"},
    {"zom": "ZOM_06", "station": "Bendungan", "start": "2020-10-11", "end": "2021-04-30"},
    {"zom": "ZOM_06", "station": "Bendungan", "start": "2021-10-11", "end": "2022-05-20"},
    {"zom": "ZOM_06", "station": "Bendungan", "start": "2022-10-01", "end": "2023-06-30"},
    {"zom": "ZOM_06", "station": "Bendungan", "start": "2023-11-11", "end": "2024-05-01"},
    {"zom": "ZOM_06", "station": "Bendungan", "start": "2024-10-21", "end": "2024-12-31"},
    # Kedungmiri (ZOM_07)
    {"zom": "ZOM_07", "station": "Kedungmiri", "start": "2019-11-01", "end": "2020-04-30"},
    {"zom": "ZOM_07", "station": "Kedungmiri", "start": "2020-10-11", "end": "2021-04-20"},
    {"zom": "ZOM_07", "station": "Kedungmiri", "start": "2021-10-11", "end": "2022-05-10"},
    {"zom": "ZOM_07", "station": "Kedungmiri", "start": "2022-10-01", "end": "2023-06-30"},
    {"zom": "ZOM_07", "station": "Kedungmiri", "start": "2023-11-01", "end": "2024-05-10"},
    {"zom": "ZOM_07", "station": "Kedungmiri", "start": "2024-11-01", "end": "2024-12-31"},
]

# Jenks break points (m3/s) of training discharge per station and season mode.
THRESHOLDS_DB = {
    "Kalibawang": {
        "rainy":    {"q1": 55.300, "q2": 94.300},
        "dry":      {"q1": 13.700, "q2": 33.400},
        "combined": {"q1": 38.100, "q2": 81.600}
    },
    "Bendungan": {
        "rainy":    {"q1": 0.110, "q2": 3.570},
        "dry":      {"q1": 0.990, "q2": 2.290},
        "combined": {"q1": 0.990, "q2": 2.730}
    },
    "Kedungmiri": {
        "rainy":    {"q1": 10.400, "q2": 26.300},
        "dry":      {"q1": 5.020,  "q2": 34.600},
        "combined": {"q1": 10.400, "q2": 26.300}
    }
}

STATIONS = {
    "Kalibawang": {"zom": "ZOM_01"},
    "Bendungan": {"zom": "ZOM_06"},
    "Kedungmiri": {"zom": "ZOM_07"}
}

RAINY = "rainy"
DRY = "dry"
COMBINED = "combined"

# Season modes: "combined" builds one pixel set from every training date,
# "seasonal" builds one per season label and only uses dates of that season.
SEASON_MODES = {
    "combined": [COMBINED],
    "seasonal": [RAINY, DRY]
}


@dataclass
class PipelineConfig:
    """All thresholds and toggles of the date selection and feature extraction
    jobs. Field defaults mirror `args_info`.
    """

    start_date: str = args_info["start_date"]["default"]
    end_date: str = args_info["end_date"]["default"]
    cloud_prob_thr: float = args_info["cloud_prob_thr"]["default"]
    valid_pixel_thr: float = args_info["valid_pixel_thr"]["default"]
    final_cloud_thr: float = args_info["final_cloud_thr"]["default"]
    cloud_prob_asset: str = args_info["cloud_prob_asset"]["default"]
    train_period: tuple = (args_info["train_start"]["default"], args_info["train_end"]["default"])
    test_period: tuple = (args_info["test_start"]["default"], args_info["test_end"]["default"])
    seasonal: bool = False
    water_freq_thr: float = args_info["water_freq_thr"]["default"]
    m_buffer_pix: int = args_info["m_buffer_pix"]["default"]
    resolution: int = args_info["resolution"]["default"]
    n_workers: int = args_info["n_workers"]["default"]
    band: str = "B08"
    reference_band: str = "B04"
    bad_scl_classes: tuple = (3, 8, 9, 10)
    percentile: float = 5
    percentile_floor: float = 1e-5
    storage_options: dict = field(default_factory=dict)

    @property
    def season_mode(self):
        return "seasonal" if self.seasonal else "combined"

    @property
    def season_slugs(self):
        return SEASON_MODES[self.season_mode]

    @classmethod
    def from_args(cls, args, storage_options=None):
        """Builds a config from parsed command line arguments. Attributes
        missing from `args` keep their defaults.
        """
        kwargs = {}
        for name in ["start_date", "end_date", "cloud_prob_thr", "valid_pixel_thr",
                     "final_cloud_thr", "cloud_prob_asset", "seasonal",
                     "water_freq_thr", "m_buffer_pix", "resolution", "n_workers"]:
            if hasattr(args, name):
                kwargs[name] = getattr(args, name)
        if hasattr(args, "train_start"):
            kwargs["train_period"] = (args.train_start, args.train_end)
        if hasattr(args, "test_start"):
            kwargs["test_period"] = (args.test_start, args.test_end)
        if storage_options:
            kwargs["storage_options"] = storage_options
        return cls(**kwargs)
