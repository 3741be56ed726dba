import argparse
import logging
import os

from cmhc.dates import DateSelector
from cmhc.defaults import PipelineConfig, args_info
from cmhc.imagery import StacSceneSource
from cmhc.stations import StationDB
from cmhc.utils import load_credentials, local_to_blob, setup_logging

logger = logging.getLogger('cmhc.select_dates')


def return_parser():
    parser = argparse.ArgumentParser(description='Select cloud-free Sentinel 2 dates per station.')
    parser.add_argument('--station',
        default=args_info["station"]["default"],
        type=args_info["station"]["type"],
        choices=args_info["station"]["choices"],
        help=args_info["station"]["help"])
    parser.add_argument('--start-date',
        default=args_info["start_date"]["default"],
        type=args_info["start_date"]["type"],
        help=args_info["start_date"]["help"])
    parser.add_argument('--end-date',
        default=args_info["end_date"]["default"],
        type=args_info["end_date"]["type"],
        help=args_info["end_date"]["help"])
    parser.add_argument('--cloud-prob-thr',
        default=args_info["cloud_prob_thr"]["default"],
        type=args_info["cloud_prob_thr"]["type"],
        help=args_info["cloud_prob_thr"]["help"])
    parser.add_argument('--valid-pixel-thr',
        default=args_info["valid_pixel_thr"]["default"],
        type=args_info["valid_pixel_thr"]["type"],
        help=args_info["valid_pixel_thr"]["help"])
    parser.add_argument('--final-cloud-thr',
        default=args_info["final_cloud_thr"]["default"],
        type=args_info["final_cloud_thr"]["type"],
        help=args_info["final_cloud_thr"]["help"])
    parser.add_argument('--cloud-prob-asset',
        default=args_info["cloud_prob_asset"]["default"],
        type=args_info["cloud_prob_asset"]["type"],
        help=args_info["cloud_prob_asset"]["help"])
    parser.add_argument('--resolution',
        default=args_info["resolution"]["default"],
        type=args_info["resolution"]["type"],
        help=args_info["resolution"]["help"])
    parser.add_argument('--roi-dir',
        default=args_info["roi_dir"]["default"],
        type=args_info["roi_dir"]["type"],
        help=args_info["roi_dir"]["help"])
    parser.add_argument('--season-db',
        default=args_info["season_db"]["default"],
        type=args_info["season_db"]["type"],
        help=args_info["season_db"]["help"])
    parser.add_argument('--out-dir',
        default=args_info["out_dir"]["default"],
        type=args_info["out_dir"]["type"],
        help=args_info["out_dir"]["help"])
    parser.add_argument('--write-to-csv',
        action=args_info["write_to_csv"]["action"],
        help=args_info["write_to_csv"]["help"])
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

    storage_options = load_credentials(args.credentials) if args.upload else None
    config = PipelineConfig.from_args(args, storage_options)

    ds = StationDB(args.roi_dir, season_db=args.season_db, storage_options=storage_options)
    stations = [args.station] if args.station else ds.names

    if not os.path.exists(args.out_dir):
        os.makedirs(args.out_dir)

    for station in stations:
        try:
            ds.get_station_data(station)
            st = ds.station[station]
            source = StacSceneSource(st.roi, config.start_date, config.end_date,
                                     resolution=config.resolution,
                                     epsg=st.get_utm_epsg(),
                                     cloud_prob_asset=config.cloud_prob_asset)
            if not source.list_dates():
                logger.warning(f"No matching images for station {station}. Skipping...")
                continue

            selector = DateSelector(st, source, ds.calendar, config)
            df = selector.run()
            if len(df) == 0:
                logger.warning(f"No cloud-free images for station {station}. Skipping...")
                continue

            if args.write_to_csv:
                outfilename = f'{args.out_dir}/{selector.out_name()}'
                df.to_csv(outfilename, index=False)
                logger.info(f'wrote csv to {outfilename}')
                if args.upload:
                    local_to_blob(args.container, outfilename,
                                  f'dates/{selector.out_name()}', storage_options)
        except FileNotFoundError as e:
            logger.error(f"Source file not found for station {station}: {e}. Skipping...")
        except (KeyError, ValueError) as e:
            logger.error(f"Could not select dates for station {station}: {e}. Skipping...")

    logger.info("Done!")
