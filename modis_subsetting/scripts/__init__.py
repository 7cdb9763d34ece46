"""
MODIS Subsetting Executable Scripts

Command-line entry points for the MODIS subsetting workflow.

Scripts:
    run_modis_subsetting.py: Subset MODIS granules into annual GeoTIFFs

Usage Examples:
    # Run with the packaged default configuration
    modis-subset -i DIR -o DIR -c DIR -L DIR -v VAR -r 4326 -l 49,60 -n -120,-98 -t true -u false

    # Run with custom configuration and verbose logging
    modis-subset ... --config custom_config.yaml --log-level DEBUG
"""
