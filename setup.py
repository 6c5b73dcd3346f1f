from setuptools import find_packages, setup

package_name = "reloc_slam"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_packages(exclude=["test", "test.*"]),
    data_files=[
        (
            "share/" + package_name + "/config",
            [
                "config/reloc_slam_base.yaml",
            ],
        ),
        (
            "share/" + package_name + "/config/trackers",
            [
                "config/trackers/ground_truth.xml",
                "config/trackers/remote_fallback.yaml",
            ],
        ),
    ],
    python_requires=">=3.9",
    install_requires=["setuptools", "numpy", "scipy", "jax", "pyyaml", "pydantic>=2"],
    extras_require={"test": ["pytest"]},
    zip_safe=True,
    description="Tracking/relocalisation core for dense RGB-D reconstruction: forest relocaliser, pose consensus, tracker composition",
    license="Apache-2.0",
)
