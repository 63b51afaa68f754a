# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Per-node container execution agent.

Allocates working storage across local disks, writes launch scripts for a
container runtime, and supervises the resulting processes.
"""
