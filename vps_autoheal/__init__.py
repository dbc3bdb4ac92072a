"""
VPS Auto-Heal
-------------

Memory-pressure watchdog for Debian/Ubuntu web servers. Each invocation
samples RAM, swap and load, then walks an escalation ladder (drop caches,
restart PHP-FPM, protect MariaDB, kill the heaviest process, reboot)
guarded by a cooldown window.
"""

APP_NAME = "VPS Auto-Heal"
VERSION = "1.0.0"

__version__ = VERSION
