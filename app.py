#!/usr/bin/env python3
"""
Hosted entrypoint for the Cost Curve Visualizer.

Hosting platforms look for a module-level Gradio app; `demo` is built from
cost_curve.gradio_ui. Building it also starts the background reference price
lookup. Launching is left to the host (or `python -m cost_curve.gradio_ui`).
"""

from cost_curve.gradio_ui import _build_ui

demo = _build_ui()
