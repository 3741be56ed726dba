"""Sentinel 2 calibration / water / measurement (C/W/M) pixel features for
river discharge estimation at gauging stations."""
