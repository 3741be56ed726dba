import argparse
import logging
import os

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import pandas as pd

from cmhc.defaults import PipelineConfig, args_info
from cmhc.imagery import StacSceneSource
from cmhc.masks import plot_masks
from cmhc.partition import period_tag
from cmhc.pipeline import FeatureExtractor
from cmhc.pixels import selections_to_gdf
from cmhc.stations import StationDB
from cmhc.utils import generate_map, load_credentials, local_to_blob, setup_logging

logger = logging.getLogger('cmhc.extract_features')


def return_parser():
    parser = argparse.ArgumentParser(description='Build C/W/M assets and per-date feature tables.')
    parser.add_argument('--station',
        default=args_info["station"]["default"],
        type=args_info["station"]["type"],
        choices=args_info["station"]["choices"],
        help=args_info["station"]["help"])
    parser.add_argument('--train-start',
        default=args_info["train_start"]["default"],
        type=args_info["train_start"]["type"],
        help=args_info["train_start"]["help"])
    parser.add_argument('--train-end',
        default=args_info["train_end"]["default"],
        type=args_info["train_end"]["type"],
        help=args_info["train_end"]["help"])
    parser.add_argument('--test-start',
        default=args_info["test_start"]["default"],
        type=args_info["test_start"]["type"],
        help=args_info["test_start"]["help"])
    parser.add_argument('--test-end',
        default=args_info["test_end"]["default"],
        type=args_info["test_end"]["type"],
        help=args_info["test_end"]["help"])
    parser.add_argument('--seasonal',
        action=args_info["seasonal"]["action"],
        help=args_info["seasonal"]["help"])
    parser.add_argument('--water-freq-thr',
        default=args_info["water_freq_thr"]["default"],
        type=args_info["water_freq_thr"]["type"],
        help=args_info["water_freq_thr"]["help"])
    parser.add_argument('--m-buffer-pix',
        default=args_info["m_buffer_pix"]["default"],
        type=args_info["m_buffer_pix"]["type"],
        help=args_info["m_buffer_pix"]["help"])
    parser.add_argument('--resolution',
        default=args_info["resolution"]["default"],
        type=args_info["resolution"]["type"],
        help=args_info["resolution"]["help"])
    parser.add_argument('--n-workers',
        default=args_info["n_workers"]["default"],
        type=args_info["n_workers"]["type"],
        help=args_info["n_workers"]["help"])
    parser.add_argument('--thresholds',
        default=args_info["thresholds"]["default"],
        type=args_info["thresholds"]["type"],
        help=args_info["thresholds"]["help"])
    parser.add_argument('--season-db',
        default=args_info["season_db"]["default"],
        type=args_info["season_db"]["type"],
        help=args_info["season_db"]["help"])
    parser.add_argument('--discharge-dir',
        default=args_info["discharge_dir"]["default"],
        type=args_info["discharge_dir"]["type"],
        help=args_info["discharge_dir"]["help"])
    parser.add_argument('--roi-dir',
        default=args_info["roi_dir"]["default"],
        type=args_info["roi_dir"]["type"],
        help=args_info["roi_dir"]["help"])
    parser.add_argument('--out-dir',
        default=args_info["out_dir"]["default"],
        type=args_info["out_dir"]["type"],
        help=args_info["out_dir"]["help"])
    parser.add_argument('--upload',
        action=args_info["upload"]["action"],
        help=args_info["upload"]["help"])
    parser.add_argument('--container',
        default=args_info["container"]["default"],
        type=args_info["container"]["type"],
        help=args_info["container"]["help"])
    parser.add_argument('--credentials',
        default=args_info["credentials"]["default"],
        type=args_info["credentials"]["type"],
        help=args_info["credentials"]["help"])
    parser.add_argument('--log-level',
        default=args_info["log_level"]["default"],
        type=args_info["log_level"]["type"],
        choices=args_info["log_level"]["choices"],
        help=args_info["log_level"]["help"])
    return parser

if __name__ == "__main__":

    args = return_parser().parse_args()
    setup_logging(args.log_level)

    needs_credentials = args.upload or args.discharge_dir.startswith('az://')
    storage_options = load_credentials(args.credentials) if needs_credentials else None
    config = PipelineConfig.from_args(args, storage_options)

    ds = StationDB(args.roi_dir, season_db=args.season_db, thresholds=args.thresholds,
                   storage_options=storage_options)
    stations = [args.station] if args.station else ds.names
    train_tag = period_tag(config.train_period)
    test_tag = period_tag(config.test_period)
    search_start = min(config.train_period[0], config.test_period[0])
    search_end = max(config.train_period[1], config.test_period[1])

    selections = {}
    for station in stations:
        try:
            ds.get_station_data(station)
            st = ds.station[station]
            st.load_discharge(args.discharge_dir, storage_options)

            train_dates = pd.read_csv(f'{args.out_dir}/dates_train_{station.lower()}_{train_tag}.csv')['date']
            test_dates = pd.read_csv(f'{args.out_dir}/dates_test_{station.lower()}_{test_tag}.csv')['date']

            source = StacSceneSource(st.roi, search_start, search_end,
                                     resolution=config.resolution,
                                     epsg=st.get_utm_epsg())
            if not source.list_dates():
                logger.warning(f"No matching images for station {station}. Skipping...")
                continue

            fe = FeatureExtractor(st, source, ds.calendar, config,
                                  train_dates.tolist(), test_dates.tolist())
            if fe.run() is None:
                continue
            written = fe.export(args.out_dir)

            for season, assets in fe.assets.items():
                f = plot_masks(assets.masks, title=f'{station} {season}')
                out_png = f'{args.out_dir}/masks_{season}_{station.upper()}_{train_tag}.png'
                f.savefig(out_png, bbox_inches='tight')
                plt.close(f)
                written.append(out_png)
            selections[station] = pd.concat(
                [selections_to_gdf(a.selections, station, s) for s, a in fe.assets.items()],
                ignore_index=True)

            if args.upload:
                for f in written:
                    local_to_blob(args.container, f, f'{station.lower()}/{os.path.basename(f)}',
                                  storage_options)
        except FileNotFoundError as e:
            logger.error(f"Source file not found for station {station}: {e}. Skipping...")
        except (KeyError, ValueError) as e:
            logger.error(f"Could not extract features for station {station}: {e}. Skipping...")

    if selections:
        plot_map = generate_map([ds.station[s] for s in selections], selections)
        plot_map.save(f'{args.out_dir}/m_pixels_map.html')
        logger.info(f"wrote map to {args.out_dir}/m_pixels_map.html")
    logger.info("Done!")
