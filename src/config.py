#!/usr/bin/env python
# -*- encoding: utf-8 -*-

############################## BEGIN IMPORTS ##################################

import logging

############################## END IMPORTS ####################################
############################## BEGIN CONFIG ###################################

VERSION = "0.1.0"

DEFAULT_GROUP = "225.1.2.3"
DEFAULT_PORT = 1234
MAX_NUM_GROUPS = 2048
STATUS_HISTORY = 1024
BUFSZ = 1624
IFNAMSIZ = 16
SETTLE_SECS = 1.0

MARK_BLANK = " "
MARK_ACTIVE = "."

# Fixed rows of the full screen, the rest depends on the number of groups
TITLE_ROW = 0
HOSTDATE_ROW = 1
HEADING_ROW = 3
GROUP_ROW = 4

CONFIG = {
    "bytes": 100,
    "count": 0,
    "foreground": True,
    "period": 100,
    "iface": "",
    "join": True,
    "loglevel": "notice",
    "logfile": "",
    "old": False,
    "port": DEFAULT_PORT,
    "ttl": 1,
    "wait": 0,
}

LOG_FORMAT = "%(asctime)s - %(levelname)8s - %(message)s [%(funcName)s:%(lineno)s]"
LOG_DATEFMT = "%a %b %d %H:%M:%S %Y"

LOG_LEVELS = {
    "none": None,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "notice": logging.INFO,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

############################## END CONFIG #####################################

if __name__ == "__main__":
    print(CONFIG)
