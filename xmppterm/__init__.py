import gi

gi.require_version("GLib", "2.0")
gi.require_version("Gio", "2.0")

__version__ = "0.1.0"
