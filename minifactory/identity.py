__codename__ = "MINIFACTORY"
__version__ = "0.3.0"
__tagline__ = "One assignment in. One hash out."

BANNER = r"""
 __  __ ___ _  _ ___ ___ _   ___ _____ ___  _____   __
|  \/  |_ _| \| |_ _| __/_\ / __|_   _/ _ \| _ \ \ / /
| |\/| || || .` || || _/ _ \ (__  | || (_) |   /\ V /
|_|  |_|___|_|\_|___|_/_/ \_\___| |_| \___/|_|_\ |_|
"""
