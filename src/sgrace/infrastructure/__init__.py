"""Infrastructure layer — SG_IO transport, procfs sampling, device setup.

This layer talks to the kernel (ioctl, procfs, sysfs, modprobe).
It may import from domain but never from services, commands, or output.
"""
