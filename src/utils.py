#!/usr/bin/env python
# -*- encoding: utf-8 -*-

############################## BEGIN IMPORTS ##################################

import os
import re
import resource
import socket
from typing import List, Optional

############################## END IMPORTS ####################################

from errors import ResourceError
import logging
logger = logging.getLogger(__name__)

############################## BEGIN UTILS ####################################

ANY_ADDR = {
    socket.AF_INET: "0.0.0.0",
    socket.AF_INET6: "::",
}

def get_hostname() -> str:
    return socket.gethostname()

def get_interfaces() -> List[str]:
    """Names of all interfaces, loopback first if present."""
    try:
        return [name for _, name in socket.if_nameindex()]
    except OSError:
        return []

def ifdefault() -> str:
    """
    Returns the interface of the default route.

    Falls back to the first non-loopback interface of the system, or an
    empty string when there is none.
    """
    output = os.popen("ip route show default 2>/dev/null").read()
    m = re.search(r"^default\s.*?\bdev\s+(\S+)", output, re.M)
    if m:
        return m.group(1)

    try:
        with open("/proc/net/route") as f:
            for line in f.readlines()[1:]:
                fields = line.split()
                if len(fields) > 1 and fields[1] == "00000000":
                    return fields[0]
    except OSError:
        pass

    for name in get_interfaces():
        if name != "lo":
            return name

    return ""

def ifindex(iface: str) -> int:
    if not iface:
        return 0
    try:
        return socket.if_nametoindex(iface)
    except OSError:
        logger.debug(f"No such interface '{iface}'")
        return 0

def ifinfo(
    iface: str,
    family: int = socket.AF_UNSPEC,
    fallback: bool = True,
) -> str:
    """
    Returns the first local address of an interface.

    Args:
        iface: Interface name.
        family: AF_INET, AF_INET6, or AF_UNSPEC for IPv4 before IPv6.
        fallback: Try the addresses of the hostname before giving up.

    Returns:
        Address in presentation form, or the any-address of the family.
    """
    families = [family] if family != socket.AF_UNSPEC else \
        [socket.AF_INET, socket.AF_INET6]

    for fam in families:
        flag = "-4" if fam == socket.AF_INET else "-6"
        command = f"ip -o {flag} addr show dev {iface} 2>/dev/null"
        output = os.popen(command).read() if iface else ""
        m = re.search(r"\binet6?\s+([0-9a-fA-F.:]+)/\d+", output)
        if m:
            return m.group(1)

    if not fallback:
        return ANY_ADDR.get(families[0], "0.0.0.0")

    try:
        fam = families[0]
        infos = socket.getaddrinfo(socket.gethostname(), None, fam)
        if infos:
            return infos[0][4][0]
    except OSError:
        pass

    return ANY_ADDR.get(families[0], "0.0.0.0")

def raise_nofile_limit(capacity: int, reserve: int = 10) -> int:
    """
    Raise the soft RLIMIT_NOFILE to hold one socket per group.

    Args:
        capacity: Number of groups the session table can hold.
        reserve: Descriptors for stdio, the selector and the like.

    Returns:
        The resulting soft limit.

    Raises:
        ResourceError: If the limit cannot be read or raised.
    """
    try:
        soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    except (OSError, ValueError) as e:
        raise ResourceError(f"Failed reading RLIMIT_NOFILE: {e}")

    logger.debug("NOFILE: current %s max %s", soft, hard)
    wanted = capacity + reserve

    if soft == resource.RLIM_INFINITY or soft >= wanted:
        return soft

    if hard != resource.RLIM_INFINITY and hard < wanted:
        raise ResourceError(
            f"Failed setting RLIMIT_NOFILE soft limit to {wanted}, max {hard}"
        )

    try:
        resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))
    except (OSError, ValueError) as e:
        raise ResourceError(
            f"Failed setting RLIMIT_NOFILE soft limit to {wanted}: {e}"
        )

    logger.debug("NOFILE: set new current %s max %s", wanted, hard)
    return wanted

def daemonize(workdir: Optional[str] = "/") -> None:
    """Detach from the controlling terminal, double fork style."""
    if os.fork() > 0:
        os._exit(0)

    os.setsid()

    if os.fork() > 0:
        os._exit(0)

    if workdir:
        os.chdir(workdir)
    os.umask(0)

    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    if devnull > 2:
        os.close(devnull)

############################## END UTILS ######################################

if __name__ == "__main__":
    iface = ifdefault()
    print(iface, ifinfo(iface))
