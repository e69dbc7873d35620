"""equiptrak command-line interface."""
