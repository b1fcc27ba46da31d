"""Enable running hcloud-ccm as a module: python -m hcloud_ccm."""

from hcloud_ccm.cli import main

if __name__ == "__main__":
    main()
